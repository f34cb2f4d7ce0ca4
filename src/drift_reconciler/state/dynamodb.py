"""DynamoDB-backed state store."""

from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from drift_reconciler.state.store import ABSENT, StateStore, VersionedValue
from drift_reconciler.utils.errors import ErrorContext, StateStoreError
from drift_reconciler.utils.logging import get_logger
from drift_reconciler.utils.retry import RetryStrategy

logger = get_logger(__name__)


class DynamoDBStateStore(StateStore):
    """State store on a DynamoDB table with a string partition key ``key``.

    Items carry ``version`` (number) and ``data`` (binary). Writes use a
    condition expression so the table itself arbitrates concurrent writers.
    """

    def __init__(
        self,
        dynamodb_client,
        table_name: str,
        retry_strategy: Optional[RetryStrategy] = None
    ):
        """Initialize DynamoDB state store.

        Args:
            dynamodb_client: Boto3 DynamoDB client
            table_name: Table name
            retry_strategy: Backoff for throttling and transient errors
        """
        self.client = dynamodb_client
        self.table_name = table_name
        self.retry = retry_strategy or RetryStrategy()

    def get(self, key: str) -> Optional[VersionedValue]:
        try:
            response = self.retry.execute_with_retry(
                self.client.get_item,
                TableName=self.table_name,
                Key={"key": {"S": key}},
                ConsistentRead=True,
            )
        except (ClientError, BotoCoreError) as e:
            raise StateStoreError(
                f"Failed to read {key} from {self.table_name}: {e}",
                context=ErrorContext(operation="get"),
                cause=e,
            )

        item = response.get("Item")
        if not item:
            return None
        return VersionedValue(data=bytes(item["data"]["B"]), version=int(item["version"]["N"]))

    def conditional_put(self, key: str, expected_version: int, data: bytes) -> bool:
        if expected_version == ABSENT:
            condition = "attribute_not_exists(#k)"
            values = None
        else:
            condition = "#v = :expected"
            values = {":expected": {"N": str(expected_version)}}

        params = {
            "TableName": self.table_name,
            "Item": {
                "key": {"S": key},
                "version": {"N": str(expected_version + 1)},
                "data": {"B": data},
            },
            "ConditionExpression": condition,
            "ExpressionAttributeNames": {"#k": "key"} if values is None else {"#v": "version"},
        }
        if values is not None:
            params["ExpressionAttributeValues"] = values

        attempts = 0

        def put():
            nonlocal attempts
            attempts += 1
            return self.client.put_item(**params)

        try:
            self.retry.execute_with_retry(put)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                # A retried write may have landed before its error came back
                if attempts > 1 and self._written(key, expected_version + 1, data):
                    logger.info(f"Conditional put on {key} applied by an earlier attempt")
                    return True
                logger.debug(f"Conditional put on {key} lost at version {expected_version}")
                return False
            raise StateStoreError(
                f"Failed to write {key} to {self.table_name}: {e}",
                context=ErrorContext(operation="conditional_put"),
                cause=e,
            )
        except BotoCoreError as e:
            raise StateStoreError(
                f"Failed to write {key} to {self.table_name}: {e}",
                context=ErrorContext(operation="conditional_put"),
                cause=e,
            )
        return True

    def _written(self, key: str, version: int, data: bytes) -> bool:
        stored = self.get(key)
        return stored is not None and stored.version == version and stored.data == data
