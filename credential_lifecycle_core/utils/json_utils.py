import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Union


class EnhancedJSONEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        elif isinstance(obj, (datetime, date)):
            return obj.isoformat()
        elif isinstance(obj, Enum):
            return obj.value
        # Pydantic models
        elif hasattr(obj, "model_dump"):
            return obj.model_dump(mode="json")
        elif isinstance(obj, bytes):
            return obj.decode("utf-8", errors="replace")
        return super().default(obj)


def dumps(obj: Any, **kwargs) -> str:
    """JSON dumps with Decimal, datetime, enum and pydantic support."""
    return json.dumps(obj, cls=EnhancedJSONEncoder, **kwargs)


def loads(s: Union[str, bytes, bytearray], **kwargs) -> Any:
    """Standard JSON loads function."""
    return json.loads(s, **kwargs)
