"""
botprobe

Black-box test harness for a webhook-based Telegram AI bot.

Available commands:
- run    - run bundled scenarios or YAML scenario files against the bot
- list   - list bundled scenarios
- recap  - print a recap of the bot's MongoDB database

To run a scenario:
    python main.py run processing_pipeline --base-url http://localhost --token <bot token> --log-path /var/log/bot.log

To run tests:
    pytest tests/ -v
"""

import sys

from botprobe.cli import main


if __name__ == "__main__":
    sys.exit(main())
