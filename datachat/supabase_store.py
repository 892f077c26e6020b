import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from datachat import config

logger = logging.getLogger(__name__)

MAX_LOGGED_RESULT_CHARS = 10000


class SupabaseStore:
    """Dataset metadata lookups and query history in Supabase"""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None):
        self.supabase_url = url if url is not None else config.SUPABASE_URL
        # Use service role key for full database access
        self.supabase_key = key if key is not None else config.SUPABASE_KEY
        self.client: Optional[Client] = None
        self.enabled = False

        # Uploaded-file metadata kept in process when the database is not available
        self.datasets_storage: Dict[str, Dict[str, Any]] = {}

        if self.supabase_url and self.supabase_key:
            try:
                self.client = create_client(self.supabase_url, self.supabase_key)
                self.enabled = True
                logger.info("Supabase store initialized")
            except Exception as e:
                logger.error("Failed to initialize Supabase client: %s", e)
                self.enabled = False
        else:
            missing_items = []
            if not self.supabase_url:
                missing_items.append("SUPABASE_URL")
            if not self.supabase_key:
                missing_items.append("SUPABASE_SERVICE_ROLE_KEY")
            logger.warning("Supabase disabled. Missing: %s", ", ".join(missing_items))

    def register_dataset(
        self, dataset_id: str, name: str, columns: List[str], row_count: int, user_id: str
    ) -> Dict[str, Any]:
        """Remember an uploaded file so it shows up in the dataset selector"""
        record = {
            "id": dataset_id,
            "name": name,
            "columns": list(columns),
            "row_count": int(row_count),
            "user_id": user_id,
        }
        self.datasets_storage[dataset_id] = record
        return record

    def list_datasets(self, user_id: str) -> List[Dict[str, Any]]:
        """
        Datasets visible to a user, for the optional dataset selector.

        Rows from the ``datasets`` table come first, followed by files
        uploaded to this process that the table does not know about.

        Returns:
            List of ``{id, name, columns, row_count}``
        """
        datasets: List[Dict[str, Any]] = []

        if self.enabled and self.client:
            try:
                response = (
                    self.client.table("datasets")
                    .select("id,name,columns,row_count")
                    .eq("user_id", user_id)
                    .order("created_at", desc=True)
                    .execute()
                )
                datasets.extend(response.data or [])
            except Exception as e:
                logger.error("Error retrieving datasets: %s", e)

        known = {str(dataset.get("id")) for dataset in datasets}
        for record in self.datasets_storage.values():
            if record["user_id"] == user_id and record["id"] not in known:
                datasets.append(
                    {
                        "id": record["id"],
                        "name": record["name"],
                        "columns": record["columns"],
                        "row_count": record["row_count"],
                    }
                )
        return datasets

    def log_query(
        self,
        query: str,
        request_type: str,
        result: Any = None,
        error: str = None,
        success: bool = True,
        execution_time: float = None,
        dataset_info: Dict = None,
        user_id: str = None,
    ) -> Optional[Dict]:
        """
        Log a prompt and its outcome to Supabase

        Args:
            query: The natural language question or chart request
            request_type: "general", "chart" or "dashboard"
            result: The result (stringified and truncated)
            error: Error message if any
            success: Whether the request was successful
            execution_time: Time taken in seconds
            dataset_info: Information about the dataset used
            user_id: User ID for the query

        Returns:
            Dict: The inserted record if successful, None otherwise
        """
        if not self.enabled:
            return None

        try:
            file_name = None
            if dataset_info and isinstance(dataset_info, dict):
                file_name = dataset_info.get("file_name")

            now = datetime.now(timezone.utc).isoformat()
            log_data = {
                "timestamp": now,
                "query": query,
                "request_type": request_type,
                "success": success,
                "error_message": error,
                "execution_time": execution_time,
                "dataset_info": json.dumps(dataset_info) if dataset_info else None,
                "user_id": user_id,
                "file_name": file_name,
                "created_at": now,
            }

            if result is not None:
                text = result if isinstance(result, str) else json.dumps(result, default=str)
                if len(text) > MAX_LOGGED_RESULT_CHARS:
                    text = text[:MAX_LOGGED_RESULT_CHARS] + "... [truncated]"
                log_data["result"] = text

            response = self.client.table("query_history").insert(log_data).execute()

            if response.data:
                return response.data[0]
            logger.warning("Failed to log query: %s", response)
            return None

        except Exception as e:
            logger.error("Error logging to Supabase: %s", e)
            return None

    def get_query_history(self, limit: int = 100, user_id: str = None) -> List[Dict]:
        """
        Retrieve query history from Supabase

        Args:
            limit: Maximum number of records to retrieve
            user_id: User ID to filter queries (if provided)

        Returns:
            List of query history records
        """
        if not self.enabled:
            return []

        try:
            query = self.client.table("query_history").select("*")
            if user_id:
                query = query.eq("user_id", user_id)

            response = query.order("timestamp", desc=True).limit(limit).execute()
            return response.data if response.data else []
        except Exception as e:
            logger.error("Error retrieving query history: %s", e)
            return []
