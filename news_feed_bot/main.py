"""Process entry point: wires the components and runs both loops."""

import json
import os
import signal
import threading
from dataclasses import dataclass
from datetime import UTC, datetime

import boto3
from botocore.exceptions import ClientError

from .cancellation import CancelToken, Cancelled
from .config import Config
from .fetcher import Fetcher
from .logging_config import get_logger, setup_logging
from .models import Source
from .notifier import Notifier
from .reporter import NullReporter, Reporter, TelegramReporter
from .rss import FeedError, probe_feed
from .storage import (
    DynamoArticleStore,
    DynamoSourceStore,
    create_tables,
    dynamodb_resource,
)
from .summarize import build_summarizer
from .telegram import TelegramClient

# How often the main thread checks whether the loops are still alive.
SUPERVISE_INTERVAL = 1.0


@dataclass
class App:
    fetcher: Fetcher
    notifier: Notifier
    reporter: Reporter


def get_telegram_token(secret_name: str, aws_region: str, execution_id: str) -> str:
    """
    Retrieve the Telegram bot token from AWS Secrets Manager.

    Supports plain string secrets and JSON secrets with a ``token``,
    ``bot_token`` or ``telegram_bot_token`` field.

    Raises:
        RuntimeError: If the secret cannot be retrieved or holds no token
    """
    secrets_logger = get_logger("secrets_manager", execution_id)

    if not secret_name or not secret_name.strip():
        raise ValueError("Secret name cannot be empty")

    try:
        secrets_logger.info(f"Retrieving Telegram token from Secrets Manager: {secret_name}")
        client = boto3.client("secretsmanager", region_name=aws_region)
        secret_value = client.get_secret_value(SecretId=secret_name).get("SecretString", "")
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        secrets_logger.error(f"Secrets Manager error retrieving {secret_name}: {error_code}")
        raise RuntimeError(f"Failed to retrieve secret {secret_name}") from e

    secret_value = (secret_value or "").strip()
    try:
        secret_data = json.loads(secret_value)
    except json.JSONDecodeError:
        secret_data = None

    if isinstance(secret_data, dict):
        for key in ("token", "bot_token", "telegram_bot_token"):
            value = secret_data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        raise RuntimeError(f"No token found in JSON secret {secret_name}")

    if not secret_value:
        raise RuntimeError(f"Secret {secret_name} contains empty value")
    return secret_value


def seed_sources(config: Config, sources: DynamoSourceStore, execution_id: str) -> int:
    """Register feeds from the feeds file that are not stored yet."""
    seed_logger = get_logger("config", execution_id)
    known_urls = {source.feed_url for source in sources.list_sources()}

    added = 0
    for seed in config.get_seed_sources():
        if seed.url in known_urls:
            continue
        try:
            entries = probe_feed(seed.url, insecure=seed.insecure)
        except FeedError as e:
            seed_logger.warning(f"Skipping feed {seed.url}: {e}", feed_url=seed.url, error=str(e))
            continue
        sources.add_source(
            Source(
                source_id=0,
                name=seed.name,
                feed_url=seed.url,
                priority=seed.priority,
                insecure=seed.insecure,
            )
        )
        known_urls.add(seed.url)
        added += 1
        seed_logger.info("Registered feed", feed_url=seed.url, entries_count=entries)
    return added


def build_app(config: Config, execution_id: str) -> App:
    """Construct every component from the configuration."""
    schedule = config.get_schedule_config()
    storage_config = config.get_storage_config()
    telegram_config = config.get_telegram_config()

    if not telegram_config.bot_token:
        telegram_config.bot_token = get_telegram_token(
            config.telegram_secret_name, config.aws_region, execution_id
        )

    dynamodb = dynamodb_resource(storage_config)
    if storage_config.create_tables:
        create_tables(dynamodb, storage_config)
    articles = DynamoArticleStore(dynamodb, storage_config.articles_table, execution_id)
    sources = DynamoSourceStore(dynamodb, storage_config.sources_table, execution_id)
    seed_sources(config, sources, execution_id)

    client = TelegramClient(telegram_config, execution_id=execution_id)
    reporter: Reporter = NullReporter()
    if telegram_config.admin_chat_id:
        reporter = TelegramReporter(client, telegram_config.admin_chat_id, execution_id)

    fetcher = Fetcher(
        articles,
        sources,
        schedule.fetch_interval,
        schedule.filter_keywords,
        reporter=reporter,
        execution_id=execution_id,
    )
    notifier = Notifier(
        articles,
        sources,
        build_summarizer(config.get_summarizer_config(), execution_id),
        client,
        telegram_config.channel_id,
        schedule.notification_interval,
        schedule.effective_lookback,
        reporter=reporter,
        execution_id=execution_id,
    )
    return App(fetcher=fetcher, notifier=notifier, reporter=reporter)


def run_loop(name: str, loop, cancel: CancelToken, reporter: Reporter, failures: list) -> None:
    """Run a loop until it is cancelled or fails, reporting failures."""
    loop_logger = get_logger("main")
    try:
        loop.start(cancel)
    except Cancelled:
        loop_logger.info(f"{name} stopped")
    except Exception as e:
        loop_logger.error(f"{name} stopped unexpectedly: {e}", error=str(e))
        reporter.notify(f"{name} stopped: {e}")
        failures.append(name)


def run(app: App, cancel: CancelToken) -> int:
    """Run both loops until cancellation or until one of them dies.

    Returns:
        Process exit code: 0 after cancellation, 1 if a loop failed
    """
    failures: list[str] = []
    threads = [
        threading.Thread(
            target=run_loop,
            args=(name, loop, cancel, app.reporter, failures),
            name=name.lower(),
        )
        for name, loop in (("Fetcher", app.fetcher), ("Notifier", app.notifier))
    ]
    for thread in threads:
        thread.start()

    while not cancel.wait(SUPERVISE_INTERVAL):
        if failures:
            # Let the supervisor restart the whole process.
            cancel.cancel()

    for thread in threads:
        thread.join()
    return 1 if failures else 0


def main() -> int:
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    execution_id = f"run_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
    main_logger = get_logger("main", execution_id)

    try:
        app = build_app(Config(), execution_id)
    except (ValueError, RuntimeError) as e:
        main_logger.error(f"Startup failed: {e}", error=str(e))
        return 2

    cancel = CancelToken()

    def handle_signal(signum, frame):
        main_logger.info("Shutdown requested", signal=signum)
        cancel.cancel()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    main_logger.info("News Feed Bot started")
    exit_code = run(app, cancel)
    main_logger.info("News Feed Bot stopped", exit_code=exit_code)
    return exit_code
