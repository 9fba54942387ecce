"""
Smart Calendar — Entry Point.

`python main.py` starts the Telegram bot (with its built-in digest
scheduler). For an external scheduler:

    python main.py enqueue   # queue today's digest job
    python main.py worker    # run one worker invocation, print its status
    python main.py reminders # send due event reminders once, print the counts
"""

import argparse
import asyncio
import json
import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


async def _run_worker_once() -> dict:
    from telegram import Bot

    from smartcal.bot.telegram_bot import build_worker
    from smartcal.config import settings

    bot = Bot(settings.TELEGRAM_BOT_TOKEN)
    async with bot:
        status = await build_worker(bot).run()
    return status.to_dict()


async def _run_reminders_once() -> dict:
    from telegram import Bot

    from smartcal.bot.telegram_bot import build_reminder_worker
    from smartcal.config import settings

    bot = Bot(settings.TELEGRAM_BOT_TOKEN)
    async with bot:
        result = await build_reminder_worker(bot).run()
    return result.to_dict()


def cli() -> None:
    parser = argparse.ArgumentParser(description="Smart Calendar assistant")
    parser.add_argument("command", nargs="?", default="bot", choices=["bot", "worker", "enqueue", "reminders"])
    args = parser.parse_args()

    if args.command == "worker":
        print(json.dumps(asyncio.run(_run_worker_once())))
        return

    if args.command == "reminders":
        print(json.dumps(asyncio.run(_run_reminders_once())))
        return

    if args.command == "enqueue":
        from smartcal.core.scheduler import enqueue_daily_digest
        from smartcal.data.jobs import JobQueueDB

        job = enqueue_daily_digest(JobQueueDB())
        print(json.dumps({"queued": job is not None, "job_id": job.id if job else None}))
        return

    from smartcal.bot.telegram_bot import main
    main()


if __name__ == "__main__":
    cli()
