"""远端侧：派发循环（executor）与引导载荷（firmware）。"""
