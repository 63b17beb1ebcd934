from dotenv import load_dotenv
import os

load_dotenv()

telegram_config = {
    "token": os.environ.get("TELEGRAM_BOT_TOKEN", ""),
    "api_base_url": os.environ.get("TELEGRAM_API_BASE_URL"),  # 本地API服务器地址，可选
}

rssbot_config = {
    "service_id": os.environ.get("RSSBOT_SERVICE_ID", "rssbot"),
    # 首次启动时导入的订阅配置文件（{"feeds": {...}} 格式），可选
    "feeds_file": os.environ.get("RSSBOT_FEEDS_FILE"),
    # 外部定时器触发轮询的节奏（秒）
    "poll_cadence_seconds": int(os.environ.get("RSSBOT_POLL_CADENCE", "60")),
    # 启动后首次轮询前的等待时间（秒）
    "startup_delay_seconds": int(os.environ.get("RSSBOT_STARTUP_DELAY", "10")),
}

storage_config = {
    "store_type": os.environ.get("STORE_TYPE"),  # file / redis，不设则自动选择
    "storage_dir": os.environ.get("STORAGE_DIR", "storage/rssbot"),
}

# 调试配置
debug_config = {
    "enabled": os.environ.get("DEBUG_MODE", "false").lower() in ("true", "1", "yes", "on"),
    "log_level": os.environ.get("LOG_LEVEL", "INFO").upper(),
}
