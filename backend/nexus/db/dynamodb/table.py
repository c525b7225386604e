from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from boto3.dynamodb.types import TypeSerializer

from .calls import RetryPolicy, ddb_call
from .client import dynamodb_client, table_resource
from .errors import DdbInternal
from .pagination import decode_next_token, encode_next_token


_serializer = TypeSerializer()


def _serialize_item(item: dict[str, Any]) -> dict[str, Any]:
    # DynamoDB client expects AttributeValue shape; TypeSerializer produces {'S': '...'} etc.
    return {k: _serializer.serialize(v) for k, v in item.items()}


def _with_expressions(
    kwargs: dict[str, Any],
    *,
    condition_expression: str | None,
    expression_attribute_names: dict[str, str] | None,
    expression_attribute_values: dict[str, Any] | None,
    serialize_values: bool = False,
) -> dict[str, Any]:
    if condition_expression:
        kwargs["ConditionExpression"] = condition_expression
    if expression_attribute_names:
        kwargs["ExpressionAttributeNames"] = expression_attribute_names
    if expression_attribute_values:
        kwargs["ExpressionAttributeValues"] = (
            _serialize_item(expression_attribute_values) if serialize_values else expression_attribute_values
        )
    return kwargs


@dataclass(slots=True)
class Page:
    items: list[dict[str, Any]]
    next_token: str | None


class DynamoTable:
    def __init__(self, *, table_name: str):
        self.table_name = str(table_name)
        self._table = table_resource(self.table_name)
        self._client = dynamodb_client()

    # --- basic operations ---

    def get_item(self, *, key: dict[str, Any]) -> dict[str, Any] | None:
        def _op():
            resp = self._table.get_item(Key=key)
            return resp.get("Item")

        return ddb_call("GetItem", _op, table_name=self.table_name, key=key)

    def put_item(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        def _op():
            kwargs = _with_expressions(
                {"Item": item},
                condition_expression=condition_expression,
                expression_attribute_names=expression_attribute_names,
                expression_attribute_values=expression_attribute_values,
            )
            return self._table.put_item(**kwargs)

        return ddb_call("PutItem", _op, table_name=self.table_name)

    def update_item(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any],
        condition_expression: str | None = None,
        return_values: str = "ALL_NEW",
    ) -> dict[str, Any] | None:
        def _op():
            kwargs = _with_expressions(
                {"Key": key, "UpdateExpression": update_expression, "ReturnValues": return_values},
                condition_expression=condition_expression,
                expression_attribute_names=expression_attribute_names,
                expression_attribute_values=expression_attribute_values,
            )
            resp = self._table.update_item(**kwargs)
            return resp.get("Attributes")

        return ddb_call("UpdateItem", _op, table_name=self.table_name, key=key)

    # --- query/scan pagination ---

    def query_page(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        limit: int = 50,
        scan_index_forward: bool = False,
        filter_expression: Any | None = None,
        next_token: str | None = None,
    ) -> Page:
        lim = max(1, min(500, int(limit or 50)))
        lek = decode_next_token(next_token) if next_token else None

        def _op():
            kwargs: dict[str, Any] = {
                "KeyConditionExpression": key_condition_expression,
                "ScanIndexForward": bool(scan_index_forward),
                "Limit": lim,
            }
            if index_name:
                kwargs["IndexName"] = index_name
            if filter_expression is not None:
                kwargs["FilterExpression"] = filter_expression
            # Only pass ExclusiveStartKey when present.
            if lek:
                kwargs["ExclusiveStartKey"] = lek
            return self._table.query(**kwargs)

        resp = ddb_call("Query", _op, table_name=self.table_name)
        return Page(items=resp.get("Items") or [], next_token=encode_next_token(resp.get("LastEvaluatedKey")))

    def scan_page(
        self,
        *,
        filter_expression: Any | None = None,
        limit: int = 200,
        next_token: str | None = None,
    ) -> Page:
        lim = max(1, min(1000, int(limit or 200)))
        lek = decode_next_token(next_token) if next_token else None

        def _op():
            kwargs: dict[str, Any] = {"Limit": lim}
            if filter_expression is not None:
                kwargs["FilterExpression"] = filter_expression
            if lek:
                kwargs["ExclusiveStartKey"] = lek
            return self._table.scan(**kwargs)

        resp = ddb_call("Scan", _op, table_name=self.table_name)
        return Page(items=resp.get("Items") or [], next_token=encode_next_token(resp.get("LastEvaluatedKey")))

    def scan_all(self, *, filter_expression: Any | None = None, page_size: int = 200) -> Iterator[dict[str, Any]]:
        token: str | None = None
        while True:
            pg = self.scan_page(filter_expression=filter_expression, limit=page_size, next_token=token)
            yield from pg.items
            token = pg.next_token
            if not token:
                return

    # --- transactions ---

    def transact_write(
        self,
        *,
        puts: Iterable[dict[str, Any]] = (),
        updates: Iterable[dict[str, Any]] = (),
        retry_policy: RetryPolicy | None = None,
    ) -> dict[str, Any]:
        # Each put/update entry should already be in DynamoDB client shape (see tx_put/tx_update).
        items: list[dict[str, Any]] = [{"Put": p} for p in puts]
        items.extend({"Update": u} for u in updates)

        if not items:
            return {"ok": True}

        def _op():
            return self._client.transact_write_items(TransactItems=items)

        return ddb_call("TransactWriteItems", _op, table_name=self.table_name, retry_policy=retry_policy)

    # Convenience builders for transact items (client shape)

    def tx_put(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return _with_expressions(
            {"TableName": self.table_name, "Item": _serialize_item(item)},
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
            serialize_values=True,
        )

    def tx_update(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any],
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        return _with_expressions(
            {
                "TableName": self.table_name,
                "Key": _serialize_item(key),
                "UpdateExpression": update_expression,
            },
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
            serialize_values=True,
        )


def get_main_table() -> DynamoTable:
    from ...settings import get_settings

    table_name = get_settings().ddb_table_name
    if not table_name:
        raise DdbInternal(message="DDB_TABLE_NAME is not set", operation="Config")
    return DynamoTable(table_name=table_name)
