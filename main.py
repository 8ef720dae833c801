"""
Task Runner - 命令行任务入口
==========================================

运行一个自然语言任务，直到完成、失败或被取消。

使用方法:
  python main.py "查询 2026-01-01 到 2026-01-31 的总成本"
  python main.py --max-steps 30 "查看任务 dw_cost_daily 的逻辑"
  python main.py --skill weekly "生成本周成本周报"
  python main.py --check-connection       # 测试模型连接
  python main.py --status                 # 查看最近一次任务结果
  python main.py --clear-logs             # 清空任务日志

运行中按 Ctrl+C 取消任务（会中止正在进行的模型调用）。
"""
import asyncio
import json
import signal
import sys

from loguru import logger

from config.settings import settings
from task_engine import build_task_engine, format_outcome


def setup_logging() -> None:
    logger.remove()

    # 控制台
    logger.add(sys.stdout, level=settings.log_level, colorize=True)

    # 文件
    logger.add(
        "logs/task_engine_{time}.log",
        rotation="1 day",
        retention="7 days",
        level="INFO",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} - {message}"
    )


async def main():
    """主入口"""
    import argparse

    parser = argparse.ArgumentParser(description="Task Runner - 数仓平台任务执行")
    parser.add_argument("task", nargs="?", help="自然语言任务")
    parser.add_argument("--model", type=str, help="使用的模型")
    parser.add_argument("--max-steps", type=int, help="步数上限")
    parser.add_argument("--context", type=str, default="", help="附加的对话上下文")
    parser.add_argument("--skill", action="append", help="指定注入的技能（可多次），默认取任务中的 @提及")
    parser.add_argument("--check-connection", action="store_true", help="测试模型连接")
    parser.add_argument("--status", action="store_true", help="显示最近一次任务结果")
    parser.add_argument("--clear-logs", action="store_true", help="清空任务日志")

    args = parser.parse_args()
    setup_logging()

    engine = build_task_engine()

    if args.clear_logs:
        engine.task_logger.clear()
        print("🧹 任务日志已清空")
        return

    if args.check_connection:
        result = await engine.model_client.check_connection(args.model)
        print(json.dumps(result, ensure_ascii=False, indent=2))
        return

    if args.status:
        status = engine.get_status()
        status.pop("logs", None)
        print(json.dumps(status, ensure_ascii=False, indent=2))
        return

    if not args.task:
        parser.print_help()
        return

    # Ctrl+C 取消当前任务
    def signal_handler():
        logger.info("Received cancel signal...")
        engine.cancel()

    loop = asyncio.get_event_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows 不支持 add_signal_handler
            pass

    outcome = await engine.start_task(
        args.task,
        model=args.model,
        max_steps=args.max_steps,
        context_text=args.context,
        skill_mentions=args.skill,
    )
    print(format_outcome(outcome))


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
