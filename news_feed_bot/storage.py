"""DynamoDB-backed article and source stores for News Feed Bot."""

import hashlib
import uuid
from datetime import UTC, datetime
from typing import Protocol

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from .config import StorageConfig
from .logging_config import get_logger
from .models import Article, Source

# Fixed width so that string comparison is chronological.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class SourceNotFoundError(LookupError):
    """No source is stored under the requested ID."""


class ArticleStore(Protocol):
    def store(self, article: Article) -> bool: ...

    def list_unposted(self, since: datetime, limit: int) -> list[Article]: ...

    def mark_posted(self, article: Article) -> None: ...


class SourceStore(Protocol):
    def list_sources(self) -> list[Source]: ...

    def source_by_id(self, source_id: int) -> Source: ...


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=UTC)


def article_id_for(link: str) -> str:
    """Stable article identifier derived from its link."""
    return hashlib.sha256(link.encode("utf-8")).hexdigest()


def dynamodb_resource(config: StorageConfig):
    return boto3.resource(
        "dynamodb", region_name=config.aws_region, endpoint_url=config.endpoint_url
    )


def create_tables(dynamodb, config: StorageConfig) -> None:
    """Create the article and source tables when they do not exist yet."""
    existing = {table.name for table in dynamodb.tables.all()}
    definitions = [
        (config.articles_table, "link", "S"),
        (config.sources_table, "source_id", "N"),
    ]
    for table_name, key, key_type in definitions:
        if table_name in existing:
            continue
        table = dynamodb.create_table(
            TableName=table_name,
            KeySchema=[{"AttributeName": key, "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": key, "AttributeType": key_type}],
            BillingMode="PAY_PER_REQUEST",
        )
        table.wait_until_exists()


def _scan_all(table, **kwargs) -> list[dict]:
    items = []
    while True:
        response = table.scan(**kwargs)
        items.extend(response.get("Items", []))
        last_key = response.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


class DynamoArticleStore:
    """Articles keyed by link; inserts never overwrite an existing row."""

    def __init__(self, dynamodb, table_name: str, execution_id: str | None = None):
        self.table_name = table_name
        self.table = dynamodb.Table(table_name)
        self.logger = get_logger("storage", execution_id)

    def store(self, article: Article) -> bool:
        """Insert an article unless one with the same link already exists.

        Returns:
            True if the article was inserted, False for a duplicate link

        Raises:
            ClientError: On any DynamoDB failure other than the duplicate case
        """
        now = datetime.now(UTC)
        item = {
            "link": article.link,
            "article_id": article.article_id or article_id_for(article.link),
            "source_id": article.source_id,
            "title": article.title,
            "summary": article.summary,
            "published_at": format_timestamp(article.published_at),
            "created_at": format_timestamp(article.created_at or now),
            "categories": list(article.categories),
        }
        try:
            self.table.put_item(
                Item=item, ConditionExpression=Attr("link").not_exists()
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                self.logger.debug("Article already stored", link=article.link)
                return False
            self.logger.error(
                f"Error storing article {article.link}: {e}",
                link=article.link,
                error=str(e),
            )
            raise
        return True

    def list_unposted(self, since: datetime, limit: int) -> list[Article]:
        """Unposted articles published at or after ``since``, oldest first."""
        rows = _scan_all(
            self.table,
            FilterExpression=Attr("posted_at").not_exists()
            & Attr("published_at").gte(format_timestamp(since)),
        )
        rows.sort(key=lambda row: (row["published_at"], row["link"]))
        return [self._to_article(row) for row in rows[:limit]]

    def mark_posted(self, article: Article) -> None:
        """Record the article as posted; repeat calls keep the first timestamp."""
        self.table.update_item(
            Key={"link": article.link},
            UpdateExpression="SET posted_at = if_not_exists(posted_at, :now)",
            ConditionExpression=Attr("link").exists(),
            ExpressionAttributeValues={":now": format_timestamp(datetime.now(UTC))},
        )

    def get(self, link: str) -> Article | None:
        response = self.table.get_item(Key={"link": link})
        row = response.get("Item")
        return self._to_article(row) if row else None

    @staticmethod
    def _to_article(row: dict) -> Article:
        return Article(
            article_id=row.get("article_id"),
            source_id=int(row["source_id"]),
            title=row.get("title", ""),
            link=row["link"],
            summary=row.get("summary", ""),
            published_at=parse_timestamp(row["published_at"]),
            posted_at=parse_timestamp(row.get("posted_at")),
            created_at=parse_timestamp(row.get("created_at")),
            categories=list(row.get("categories") or []),
        )


class DynamoSourceStore:
    """Configured feeds keyed by numeric source ID."""

    def __init__(self, dynamodb, table_name: str, execution_id: str | None = None):
        self.table_name = table_name
        self.table = dynamodb.Table(table_name)
        self.logger = get_logger("storage", execution_id)

    def list_sources(self) -> list[Source]:
        """All sources, highest priority first."""
        sources = [self._to_source(row) for row in _scan_all(self.table)]
        sources.sort(key=lambda source: (-source.priority, source.source_id))
        return sources

    def source_by_id(self, source_id: int) -> Source:
        response = self.table.get_item(Key={"source_id": source_id})
        row = response.get("Item")
        if not row:
            raise SourceNotFoundError(f"source {source_id} not found")
        return self._to_source(row)

    def add_source(self, source: Source) -> int:
        """Store a source, assigning an ID when it has none. Returns the ID."""
        source_id = source.source_id or uuid.uuid4().int >> 80
        created_at = source.created_at or datetime.now(UTC)
        self.table.put_item(
            Item={
                "source_id": source_id,
                "name": source.name,
                "feed_url": source.feed_url,
                "priority": source.priority,
                "insecure": source.insecure,
                "created_at": format_timestamp(created_at),
            }
        )
        self.logger.info(
            "Stored source", source_id=source_id, source_name=source.name, feed_url=source.feed_url
        )
        return source_id

    @staticmethod
    def _to_source(row: dict) -> Source:
        return Source(
            source_id=int(row["source_id"]),
            name=row.get("name", ""),
            feed_url=row["feed_url"],
            priority=int(row.get("priority", 0)),
            insecure=bool(row.get("insecure", False)),
            created_at=parse_timestamp(row.get("created_at")),
        )
