"""随 package 分发的资源（默认配置）。"""
