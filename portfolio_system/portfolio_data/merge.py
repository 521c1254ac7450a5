"""
Merge a live Project Server project with its local enrichment record.

Project Server owns the operational fields (progress, dates, tasks); the
enrichment record owns the analytics the server does not model (risk, PM,
AI insights). Description-encoded metadata sits in between: it wins over
enrichment when present.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from portfolio_system.core.description_codec import decode_description
from portfolio_system.project_server.schemas import RemoteProject, RemoteTask

SOURCE_TAG = 'project-server'
SHORT_ID_LENGTH = 8


@dataclass
class MergedProject:
    id: str
    ps_id: str
    name: str
    progress: float
    start_date: str
    end_date: str
    status: str
    health: str
    budget: float
    spent: float
    roi: float
    alignment_score: float
    strategic_objective: str
    risk_score: float = 0
    risks: List[Any] = field(default_factory=list)
    pm_id: str = ''
    pm_name: str = ''
    ai_insights: Dict[str, Any] = field(default_factory=dict)
    lessons_learned: List[Any] = field(default_factory=list)
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    last_sync: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'psId': self.ps_id,
            'name': self.name,
            'progress': self.progress,
            'startDate': self.start_date,
            'endDate': self.end_date,
            'status': self.status,
            'health': self.health,
            'budget': self.budget,
            'spent': self.spent,
            'roi': self.roi,
            'alignmentScore': self.alignment_score,
            'strategicObjective': self.strategic_objective,
            'riskScore': self.risk_score,
            'risks': self.risks,
            'pmId': self.pm_id,
            'pmName': self.pm_name,
            'aiInsights': self.ai_insights,
            'lessonsLearned': self.lessons_learned,
            'tasks': self.tasks,
            '_source': SOURCE_TAG,
            '_lastSync': self.last_sync,
        }


def compute_spent(tasks: Sequence[RemoteTask]) -> float:
    """Spend realised so far: sum of fixed cost x completion over tasks"""
    return sum(task.realized_cost for task in tasks)


def find_enrichment(name: str, records: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Enrichment record with exactly this project name, or an empty one"""
    for record in records:
        if record.get('name') == name:
            return record
    return {}


def merge_project_data(project: RemoteProject, tasks: Sequence[RemoteTask],
                       enrichment_records: Sequence[Dict[str, Any]],
                       now: Optional[datetime] = None) -> MergedProject:
    desc = decode_description(project.description)
    mock = find_enrichment(project.name, enrichment_records)
    now = now or datetime.now(timezone.utc)

    return MergedProject(
        # Enrichment id keeps dashboard links stable across syncs
        id=mock.get('id') or project.id[:SHORT_ID_LENGTH],
        ps_id=project.id,
        name=project.name,

        progress=project.percent_complete or 0,
        start_date=project.start_date or mock.get('startDate') or '',
        end_date=project.finish_date or mock.get('endDate') or '',

        status=desc.get('status') or mock.get('status') or 'Unknown',
        health=desc.get('health') or mock.get('health') or 'yellow',
        budget=desc.get('budget') or mock.get('budget') or 0,
        spent=compute_spent(tasks) or mock.get('spent') or 0,
        roi=desc.get('roi') or mock.get('roi') or 0,
        alignment_score=desc.get('alignment') or mock.get('alignmentScore') or 0,
        strategic_objective=desc.get('strategicObjective') or mock.get('strategicObjective') or '',

        risk_score=mock.get('riskScore') or 0,
        risks=mock.get('risks') or [],
        pm_id=mock.get('pmId') or '',
        pm_name=mock.get('pmName') or '',
        ai_insights=mock.get('aiInsights') or {},
        lessons_learned=mock.get('lessonsLearned') or [],

        tasks=[task.to_dict() for task in tasks],
        last_sync=now.isoformat(),
    )
