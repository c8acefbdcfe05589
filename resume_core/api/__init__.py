"""HTTP 接口层（FastAPI）。"""
