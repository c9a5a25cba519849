"""
后端服务器启动脚本

启动 uvicorn 服务器运行 FastAPI 应用。
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).parent
storage_dir = BASE_DIR / "storage"

# 切换到 backend 目录，使 .env 与相对路径保持一致
os.chdir(BASE_DIR)
storage_dir.mkdir(exist_ok=True)


def main():
    """启动服务器"""
    import uvicorn
    from diary_comic.main import app

    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", "8123"))

    print("=" * 60)
    print("Diary Comic 后端服务启动中...")
    print(f"工作目录: {BASE_DIR}")
    print(f"数据存储: {storage_dir}")
    print(f"监听地址: http://{host}:{port}")
    print("=" * 60)

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=True
    )


if __name__ == "__main__":
    main()
