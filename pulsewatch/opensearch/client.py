"""OpenSearch client wrapper with connection management."""

from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import List, Optional

import structlog
from opensearchpy import OpenSearch
from opensearchpy.exceptions import NotFoundError, RequestError

from ..config import Settings
from .mappings import fixed_indices, index_templates, ism_policy

logger = structlog.get_logger(__name__)

# Daily index families subject to retention
TIME_PARTITIONED = ("occurrences", "performance")


class OpenSearchClient:
    """
    OpenSearch client wrapper.

    Manages connection lifecycle and provides helper methods
    for index management.
    """

    def __init__(self, settings: Settings):
        """
        Initialize OpenSearch client wrapper.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.prefix = settings.opensearch_index_prefix
        self._instance: Optional[OpenSearch] = None
        self._lock = Lock()

    def get_client(self) -> OpenSearch:
        """
        Get the underlying OpenSearch client, creating it on first use.

        Returns:
            OpenSearch client instance
        """
        if self._instance is None:
            with self._lock:
                if self._instance is None:
                    auth = None
                    if self.settings.opensearch_username:
                        auth = (
                            self.settings.opensearch_username,
                            self.settings.opensearch_password or "",
                        )

                    self._instance = OpenSearch(
                        hosts=self.settings.opensearch_hosts,
                        http_auth=auth,
                        use_ssl=self.settings.opensearch_use_ssl,
                        verify_certs=self.settings.opensearch_verify_certs,
                        ca_certs=self.settings.opensearch_ca_certs,
                        ssl_show_warn=False,
                        timeout=30,
                        max_retries=3,
                        retry_on_timeout=True,
                    )

                    logger.info("opensearch_client_initialized", hosts=self.settings.opensearch_hosts)

        return self._instance

    def health_check(self) -> dict:
        """
        Check cluster health.

        Returns:
            Cluster health info dict
        """
        return self.get_client().cluster.health()

    def daily_index(self, family: str, timestamp_ms: Optional[int] = None) -> str:
        """
        Daily index name for a time-partitioned family.

        Format: {prefix}-{family}-YYYY.MM.DD
        """
        if timestamp_ms is None:
            moment = datetime.now(timezone.utc)
        else:
            moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
        return f"{self.prefix}-{family}-{moment.strftime('%Y.%m.%d')}"

    def ensure_index_templates(self) -> bool:
        """
        Create or update templates for the daily indices.

        Returns:
            True if successful
        """
        client = self.get_client()

        try:
            for name, body in index_templates(self.prefix).items():
                client.indices.put_index_template(name=name, body=body)
                logger.info("index_template_updated", template=name)
            return True

        except RequestError as e:
            logger.error("index_template_failed", error=str(e))
            return False

    def ensure_indices(self) -> bool:
        """
        Create the fixed indices that do not exist yet.

        Returns:
            True if every index exists or was created
        """
        client = self.get_client()
        ok = True

        for index_name, body in fixed_indices(self.prefix).items():
            try:
                if not client.indices.exists(index=index_name):
                    client.indices.create(index=index_name, body=body)
                    logger.info("index_created", index=index_name)

            except RequestError as e:
                # Index might have been created by another process
                if "resource_already_exists_exception" in str(e):
                    continue
                logger.error("index_create_failed", index=index_name, error=str(e))
                ok = False

        return ok

    def ensure_ism_policy(self, retention_days: int) -> bool:
        """
        Create or update the retention ISM policy.

        Returns:
            True if successful
        """
        client = self.get_client()
        policy_name = f"{self.prefix}-retention"
        path = f"/_plugins/_ism/policies/{policy_name}"

        try:
            try:
                current = client.transport.perform_request("GET", path)
                params = {
                    "if_seq_no": current.get("_seq_no"),
                    "if_primary_term": current.get("_primary_term"),
                }
            except NotFoundError:
                params = None

            client.transport.perform_request(
                "PUT", path, params=params, body=ism_policy(self.prefix, retention_days)
            )
            logger.info("ism_policy_updated", policy=policy_name)
            return True

        except Exception as e:
            logger.warning("ism_policy_failed", policy=policy_name, error=str(e))
            return False

    def delete_old_indices(self, days_to_keep: int = 90) -> List[str]:
        """
        Delete daily indices older than specified days.

        Args:
            days_to_keep: Number of days to keep

        Returns:
            List of deleted index names
        """
        client = self.get_client()
        cutoff_date = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=days_to_keep)
        deleted = []

        for family in TIME_PARTITIONED:
            family_prefix = f"{self.prefix}-{family}-"
            try:
                indices = client.indices.get(index=f"{family_prefix}*")
            except NotFoundError:
                continue

            for index_name in indices:
                try:
                    index_date = datetime.strptime(index_name[len(family_prefix):], "%Y.%m.%d")
                except ValueError:
                    # Index name doesn't match expected format
                    continue

                if index_date < cutoff_date:
                    client.indices.delete(index=index_name)
                    deleted.append(index_name)
                    logger.info("old_index_deleted", index=index_name)

        return deleted

    def close(self):
        """Close the client connection."""
        if self._instance is not None:
            self._instance.close()
            self._instance = None
            logger.info("opensearch_client_closed")
