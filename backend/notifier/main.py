# backend/notifier/main.py

"""
バックエンドアプリケーションのエントリーポイント。

主な責務:
- 受信者登録 / 通知送信 / 受信箱参照のエンドポイントを公開する
- ヘルスチェックエンドポイントを公開する
"""

from fastapi import FastAPI

from notifier.notifications.router import router as notifications_router


def create_app() -> FastAPI:
    """
    FastAPI アプリケーションファクトリ。

    - 通知エンドポイント (/recipients, /notifications)
    - ヘルスチェックエンドポイント (/health)
    """
    app = FastAPI(title="Notifier Backend")

    # ルーター登録
    app.include_router(notifications_router)

    @app.get("/health", tags=["health"])
    def health_check() -> dict:
        """
        簡易ヘルスチェックエンドポイント。
        モニタリングや動作確認用。
        """
        return {"status": "ok"}

    return app


# uvicorn 実行時のエントリーポイント
app = create_app()
