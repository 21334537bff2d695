"""
证书检查结果存储
"""
import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from ..interfaces import ResultStoreInterface
from ..models import CertificateRecord


class InMemoryResultStore(ResultStoreInterface):
    """内存结果存储（只追加）"""

    def __init__(self):
        self._records: Dict[str, List[CertificateRecord]] = defaultdict(list)
        self._lock = threading.Lock()

    def append(self, record: CertificateRecord) -> None:
        with self._lock:
            self._records[record.domain_id].append(record)

    def latest(self, domain_id: str) -> Optional[CertificateRecord]:
        with self._lock:
            records = list(self._records.get(domain_id, []))
        if not records:
            return None
        return max(records, key=lambda r: r.checked_at)

    def history(self, domain_id: str) -> List[CertificateRecord]:
        with self._lock:
            records = list(self._records.get(domain_id, []))
        return sorted(records, key=lambda r: r.checked_at, reverse=True)

    def count(self) -> int:
        """记录总数"""
        with self._lock:
            return sum(len(records) for records in self._records.values())


class DynamoDBResultStore(ResultStoreInterface):
    """DynamoDB结果存储

    分区键为 domain_id，排序键为 "<checked_at>#<record_id>"，
    时间统一保存为带微秒的UTC ISO-8601字符串，保证字典序即时间序。
    """

    PARTITION_KEY = 'domain_id'
    SORT_KEY = 'checked_key'

    def __init__(self, table_name: str, region_name: Optional[str] = None):
        """
        初始化DynamoDB结果存储

        Args:
            table_name: 表名
            region_name: AWS区域名称
        """
        self.table_name = table_name
        self.region_name = region_name or 'us-east-1'
        self.logger = logging.getLogger(__name__)

        self.dynamodb = boto3.resource('dynamodb', region_name=self.region_name)
        self.table = self.dynamodb.Table(table_name)
        self.logger.info(f"DynamoDB结果存储初始化成功，表: {table_name}，区域: {self.region_name}")

    def create_table(self) -> None:
        """创建结果表（已存在时跳过）"""
        client = self.dynamodb.meta.client
        try:
            client.create_table(
                TableName=self.table_name,
                KeySchema=[
                    {'AttributeName': self.PARTITION_KEY, 'KeyType': 'HASH'},
                    {'AttributeName': self.SORT_KEY, 'KeyType': 'RANGE'},
                ],
                AttributeDefinitions=[
                    {'AttributeName': self.PARTITION_KEY, 'AttributeType': 'S'},
                    {'AttributeName': self.SORT_KEY, 'AttributeType': 'S'},
                ],
                BillingMode='PAY_PER_REQUEST'
            )
            client.get_waiter('table_exists').wait(TableName=self.table_name)
            self.logger.info(f"已创建结果表: {self.table_name}")
        except ClientError as e:
            if e.response['Error']['Code'] != 'ResourceInUseException':
                raise
            self.logger.debug(f"结果表已存在: {self.table_name}")

    def test_connection(self) -> bool:
        """
        测试表是否可访问

        Returns:
            bool: 是否可访问
        """
        try:
            self.table.load()
            return True
        except ClientError as e:
            self.logger.error(f"访问结果表 {self.table_name} 失败: {e.response['Error']['Code']}")
            return False

    def append(self, record: CertificateRecord) -> None:
        try:
            self.table.put_item(Item=self._to_item(record))
        except ClientError as e:
            self.logger.error(
                f"写入域名 {record.domain_id} 的证书记录失败: "
                f"{e.response['Error']['Code']}: {e.response['Error']['Message']}"
            )
            raise

    def latest(self, domain_id: str) -> Optional[CertificateRecord]:
        response = self.table.query(
            KeyConditionExpression=Key(self.PARTITION_KEY).eq(domain_id),
            ScanIndexForward=False,
            Limit=1
        )
        items = response.get('Items', [])
        if not items:
            return None
        return self._from_item(items[0])

    def history(self, domain_id: str) -> List[CertificateRecord]:
        records = []
        kwargs = {
            'KeyConditionExpression': Key(self.PARTITION_KEY).eq(domain_id),
            'ScanIndexForward': False
        }
        while True:
            response = self.table.query(**kwargs)
            records.extend(self._from_item(item) for item in response.get('Items', []))
            if 'LastEvaluatedKey' not in response:
                break
            kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']
        return records

    def _to_item(self, record: CertificateRecord) -> Dict[str, Any]:
        checked_at = _format_time(record.checked_at)
        item = {
            self.PARTITION_KEY: record.domain_id,
            self.SORT_KEY: f"{checked_at}#{record.record_id}",
            'record_id': record.record_id,
            'checked_at': checked_at,
            'is_valid': record.is_valid,
        }
        optional = {
            'issuer': record.issuer,
            'subject': record.subject,
            'valid_from': _format_time(record.valid_from) if record.valid_from else None,
            'valid_to': _format_time(record.valid_to) if record.valid_to else None,
            'error': record.error,
        }
        # DynamoDB不保存None值
        item.update({k: v for k, v in optional.items() if v is not None})
        return item

    def _from_item(self, item: Dict[str, Any]) -> CertificateRecord:
        return CertificateRecord(
            domain_id=item[self.PARTITION_KEY],
            issuer=item.get('issuer'),
            subject=item.get('subject'),
            valid_from=_parse_time(item.get('valid_from')),
            valid_to=_parse_time(item.get('valid_to')),
            is_valid=bool(item.get('is_valid', False)),
            checked_at=_parse_time(item['checked_at']),
            error=item.get('error'),
            record_id=item['record_id']
        )


def _format_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)
