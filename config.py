VERSION = "1.0.0"
TRADE_LOG_FILENAME = "SignalTrade.log"
TRADE_LOG_PATH_ENV = "SIGNAL_TRADE_LOG_PATH"
TRADE_LOG_ECHO_ENV = "SIGNAL_TRADE_LOG_ECHO"
LOG_ROTATE_MAX_BYTES = 5 * 1024 * 1024
# Keep up to 10 files per log stream (1 active + 9 backups).
LOG_ROTATE_BACKUP_COUNT = 9

# Local inbox consumed by the signal loop next to Telegram polling.
SIGNAL_INBOX_FILENAME = "SignalTrade-signal-inbox.jsonl"
SIGNAL_LOOP_INTERVAL_SEC = 1.0
DAILY_REPORT_CHECK_INTERVAL_SEC = 60.0
