"""内置 library（每个 module 暴露一个 `LIBRARY`）。"""
