"""Info library：远端解释器与主机的基本信息。"""

from __future__ import annotations

from ipc_pyssh.libraries.models import LibraryBundle

LIBRARY = LibraryBundle(
    classname="",
    functions={
        "uname": "return tuple(os.uname())",
        "ostype": "sys.platform",
        "pythonbin": "sys.executable",
        "pyversion": "platform.python_version()",
        "hostname": "socket.gethostname()",
    },
    init="import os\nimport platform\nimport socket\nimport sys\n",
    description="Basic facts about the remote interpreter and host.",
)
