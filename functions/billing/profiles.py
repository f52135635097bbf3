"""
DynamoDB access for user subscription profiles.

Profiles are keyed by user id (pk=user_id, sk=PROFILE) with two GSIs used
for identity resolution: email-index and stripe-customer-index.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from billing.errors import PersistenceError
from shared.aws_clients import get_dynamodb

logger = logging.getLogger(__name__)

PROFILES_TABLE = os.environ.get("PROFILES_TABLE") or "sprouttie-profiles"
PROFILE_SK = "PROFILE"


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return email.strip().lower() or None


class ProfileStore:
    """Reads and conditional writes against the profiles table."""

    def __init__(self, table=None):
        self.table = table if table is not None else get_dynamodb().Table(PROFILES_TABLE)

    def get(self, user_id: str) -> Optional[dict]:
        try:
            response = self.table.get_item(Key={"pk": user_id, "sk": PROFILE_SK})
        except ClientError as e:
            raise PersistenceError(f"Failed to read profile {user_id}: {e}") from e
        return response.get("Item")

    def _query_one(self, index_name: str, attribute: str, value: str) -> Optional[dict]:
        try:
            response = self.table.query(
                IndexName=index_name,
                KeyConditionExpression=Key(attribute).eq(value),
            )
        except ClientError as e:
            raise PersistenceError(f"Failed to query {index_name}: {e}") from e

        items = [item for item in response.get("Items", []) if item.get("sk") == PROFILE_SK]
        if len(items) > 1:
            logger.warning(
                f"{len(items)} profiles share {attribute}; using {items[0]['pk']}",
                extra={"index": index_name},
            )
        return items[0] if items else None

    def find_by_customer_id(self, customer_id: str) -> Optional[dict]:
        """Look up a profile by Stripe customer ID using GSI."""
        if not customer_id:
            return None
        return self._query_one("stripe-customer-index", "stripe_customer_id", customer_id)

    def find_by_email(self, email: str) -> Optional[dict]:
        """Look up a profile by email using GSI.

        Signup may have stored the address with its original casing, so the
        exact value is tried before the normalized one.
        """
        if not email:
            return None
        profile = self._query_one("email-index", "email", email)
        normalized = normalize_email(email)
        if profile is None and normalized and normalized != email:
            profile = self._query_one("email-index", "email", normalized)
        return profile

    def set_customer_id(self, user_id: str, customer_id: str) -> None:
        """Attach a Stripe customer ID to an existing profile."""
        try:
            self.table.update_item(
                Key={"pk": user_id, "sk": PROFILE_SK},
                UpdateExpression="SET stripe_customer_id = :cust, updated_at = :now",
                ConditionExpression="attribute_exists(pk)",
                ExpressionAttributeValues={
                    ":cust": customer_id,
                    ":now": datetime.now(timezone.utc).isoformat(),
                },
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                logger.warning(f"Profile {user_id} vanished before customer backfill")
                return
            raise PersistenceError(f"Failed to backfill customer for {user_id}: {e}") from e

    def update(
        self,
        user_id: str,
        set_fields: dict[str, Any],
        set_if_missing: Optional[dict[str, Any]] = None,
        condition: Optional[str] = None,
        condition_names: Optional[dict[str, str]] = None,
        condition_values: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Upsert profile fields, optionally guarded by a condition.

        Fields whose value is None are skipped: GSI key attributes may not be
        written as null, and a missing value never clears stored state.
        Attribute names are always aliased since words like ``plan`` are
        DynamoDB reserved words.

        Args:
            user_id: Profile key
            set_fields: Attributes to overwrite
            set_if_missing: Attributes written only when not already stored
            condition: DynamoDB ConditionExpression over stored attributes
            condition_names: ``#placeholder`` -> attribute name for ``condition``
            condition_values: ``:placeholder`` -> value for ``condition``

        Returns:
            True if written, False if the condition rejected the write.

        Raises:
            PersistenceError: on any other DynamoDB failure.
        """
        now = datetime.now(timezone.utc).isoformat()
        names: dict[str, str] = {"#uid": "user_id", "#upd": "updated_at", "#crt": "created_at"}
        values: dict[str, Any] = {":uid": user_id, ":upd": now}
        parts = ["#uid = :uid", "#upd = :upd", "#crt = if_not_exists(#crt, :upd)"]

        for i, (name, value) in enumerate(sorted(set_fields.items())):
            if value is None:
                continue
            names[f"#s{i}"] = name
            values[f":s{i}"] = value
            parts.append(f"#s{i} = :s{i}")

        for i, (name, value) in enumerate(sorted((set_if_missing or {}).items())):
            if value is None:
                continue
            names[f"#m{i}"] = name
            values[f":m{i}"] = value
            parts.append(f"#m{i} = if_not_exists(#m{i}, :m{i})")

        kwargs = {
            "Key": {"pk": user_id, "sk": PROFILE_SK},
            "UpdateExpression": "SET " + ", ".join(parts),
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
        }
        if condition:
            kwargs["ConditionExpression"] = condition
            names.update(condition_names or {})
            values.update(condition_values or {})

        try:
            self.table.update_item(**kwargs)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return False
            raise PersistenceError(f"Failed to update profile {user_id}: {e}") from e
        return True
