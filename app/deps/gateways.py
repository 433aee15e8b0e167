from typing import Iterator

from app.services.batch_store import BatchStore
from app.services.erp_client import ErpClient


def get_erp_client() -> Iterator[ErpClient]:
    client = ErpClient()
    try:
        yield client
    finally:
        client.close()


def get_batch_store() -> BatchStore:
    return BatchStore()
