"""
Project Server response shapes.

Project Server answers in OData "verbose" JSON: collections arrive as
{"d": {"results": [...]}} and single values hang off named children of "d".
These helpers pull out exactly the field each endpoint promises and raise
SchemaError when it is missing, instead of letting None leak into callers.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from portfolio_system.core.errors import SchemaError


def _walk(payload: Any, path: List[str], endpoint: str) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict) or key not in node:
            raise SchemaError(
                f"{endpoint}: expected field '{'.'.join(path)}' missing from response",
                details={'missing': key},
            )
        node = node[key]
    return node


def extract_results(payload: Any, endpoint: str) -> List[Dict[str, Any]]:
    """d.results of a collection response"""
    results = _walk(payload, ['d', 'results'], endpoint)
    if not isinstance(results, list):
        raise SchemaError(f"{endpoint}: d.results is not a list")
    return results


def extract_digest(payload: Any) -> str:
    """d.GetContextWebInformation.FormDigestValue of a contextinfo response"""
    digest = _walk(payload, ['d', 'GetContextWebInformation', 'FormDigestValue'], 'contextinfo')
    if not digest:
        raise SchemaError("contextinfo: FormDigestValue is empty")
    return digest


def extract_job_id(payload: Any) -> Optional[str]:
    """Queue job id of a publish response, None when the server returned no job"""
    if not isinstance(payload, dict):
        return None
    node = payload.get('d')
    if not isinstance(node, dict):
        return None
    publish = node.get('publish')
    if isinstance(publish, dict) and publish.get('Value'):
        return publish['Value']
    return None


def _date_only(value: Optional[str]) -> str:
    return value.split('T')[0] if value else ''


@dataclass(frozen=True)
class RemoteProject:
    id: str
    name: str
    percent_complete: float = 0
    description: str = ''
    start_date: str = ''
    finish_date: str = ''

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'RemoteProject':
        if 'Id' not in record or 'Name' not in record:
            raise SchemaError("Projects: record without Id/Name", details={'record': record})
        return cls(
            id=record['Id'],
            name=record['Name'],
            percent_complete=record.get('PercentComplete') or 0,
            description=record.get('Description') or '',
            start_date=_date_only(record.get('StartDate')),
            finish_date=_date_only(record.get('FinishDate')),
        )


@dataclass(frozen=True)
class RemoteTask:
    id: str
    name: str
    percent_complete: float = 0
    fixed_cost: float = 0
    start_date: str = ''
    finish_date: str = ''

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'RemoteTask':
        if 'Id' not in record:
            raise SchemaError("Tasks: record without Id", details={'record': record})
        return cls(
            id=record['Id'],
            name=record.get('Name') or '',
            percent_complete=record.get('PercentComplete') or 0,
            fixed_cost=record.get('FixedCost') or 0,
            start_date=_date_only(record.get('Start')),
            finish_date=_date_only(record.get('Finish')),
        )

    @property
    def realized_cost(self) -> float:
        """Cost realised so far: fixed cost scaled by completion"""
        return self.fixed_cost * (self.percent_complete / 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'progress': self.percent_complete,
            'cost': self.fixed_cost,
            'startDate': self.start_date,
            'endDate': self.finish_date,
        }


@dataclass(frozen=True)
class EnterpriseResource:
    id: str
    name: str

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'EnterpriseResource':
        if 'Id' not in record:
            raise SchemaError("EnterpriseResources: record without Id", details={'record': record})
        return cls(id=record['Id'], name=record.get('Name') or '')

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name}


@dataclass
class PublishResult:
    project_id: str
    job_id: Optional[str]
    confirmed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {'projectId': self.project_id, 'jobId': self.job_id, 'confirmed': self.confirmed}
