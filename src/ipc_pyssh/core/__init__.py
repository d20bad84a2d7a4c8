"""核心共享组件（错误分类）。"""
