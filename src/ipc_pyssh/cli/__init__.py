"""命令行入口（`ipc-pyssh`）。"""
