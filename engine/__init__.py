"""分析门面层（engine）。

`AnalyticsFacade.build_view(snapshot, ...) -> AnalyticsView` 把指标、深度与风险组合成只读视图；
命令行入口由仓库根目录 `main.py` 统一承载。
"""
