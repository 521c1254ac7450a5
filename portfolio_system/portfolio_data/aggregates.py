"""
Portfolio aggregates - pure functions over already-merged project data.
None of these fetch or cache anything; PortfolioDataService hands them data.
"""

from typing import Any, Dict, Iterable, List

PM_METRICS = ['delivery', 'budget', 'riskResolution', 'stakeholderSatisfaction', 'documentation']
RISK_CATEGORIES = ['Resource', 'Scope', 'Financial', 'Technical', 'Schedule']

OVERLOAD_WORKLOAD = 80
BUDGET_BURN_THRESHOLD = 0.8
BUDGET_PROGRESS_FLOOR = 70
SUPPORT_SCORE_FLOOR = 75


def _mean(values: Iterable[float]) -> int:
    values = list(values)
    if not values:
        return 0
    return round(sum(values) / len(values))


def portfolio_summary(projects: List[Dict[str, Any]], objectives: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        'totalProjects': len(projects),
        'totalBudget': sum(p.get('budget') or 0 for p in projects),
        'totalSpent': sum(p.get('spent') or 0 for p in projects),
        'healthBreakdown': {
            colour: sum(1 for p in projects if p.get('health') == colour)
            for colour in ('green', 'yellow', 'red')
        },
        'avgProgress': _mean(p.get('progress') or 0 for p in projects),
        'strategicObjectives': len(objectives),
        'projects': projects,
        'objectives': objectives,
    }


def strategy_summary(projects: List[Dict[str, Any]], objectives: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        'objectives': [
            {**obj, 'projectDetails': [p for p in projects if p.get('id') in obj.get('projects', [])]}
            for obj in objectives
        ],
        'overallROI': _mean(p.get('roi') or 0 for p in projects),
        'alignmentScore': _mean(p.get('alignmentScore') or 0 for p in projects),
    }


def build_alerts(projects: List[Dict[str, Any]], risks: List[Dict[str, Any]],
                 pms: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Critical alerts first (red projects, critical risks), then warnings"""
    alerts = []

    for p in projects:
        if p.get('health') == 'red':
            alerts.append({'type': 'critical', 'category': 'project',
                           'message': f"{p['name']} is at risk", 'projectId': p.get('id')})

    for r in risks:
        if r.get('status') == 'Critical':
            alerts.append({'type': 'critical', 'category': 'risk',
                           'message': f"Critical risk: {r.get('title')}", 'projectId': r.get('projectId')})

    for pm in pms:
        if (pm.get('workload') or 0) > OVERLOAD_WORKLOAD:
            alerts.append({'type': 'warning', 'category': 'resource',
                           'message': f"{pm['name']} is overloaded ({pm['workload']}%)", 'pmId': pm.get('id')})

    for p in projects:
        budget = p.get('budget') or 0
        # No budget recorded means no burn rate to judge
        if not budget:
            continue
        burn = (p.get('spent') or 0) / budget
        progress = p.get('progress') or 0
        if burn > BUDGET_BURN_THRESHOLD and progress < BUDGET_PROGRESS_FLOOR:
            alerts.append({
                'type': 'warning', 'category': 'budget',
                'message': f"{p['name']} budget concern: {round(burn * 100)}% spent, {progress}% complete",
                'projectId': p.get('id'),
            })

    return alerts


def pm_scores(pms: List[Dict[str, Any]]) -> Dict[str, Any]:
    ranked = sorted(pms, key=lambda pm: pm.get('overallScore') or 0, reverse=True)
    return {
        'projectManagers': ranked,
        'metrics': list(PM_METRICS),
        'avgScore': _mean(pm.get('overallScore') or 0 for pm in pms),
        'topPerformer': ranked[0] if ranked else None,
        'needsSupport': [
            pm for pm in pms
            if (pm.get('overallScore') or 0) < SUPPORT_SCORE_FLOOR or pm.get('trend') == 'down'
        ],
    }


def risk_summary(risks: List[Dict[str, Any]]) -> Dict[str, Any]:
    def count_status(status):
        return sum(1 for r in risks if r.get('status') == status)

    return {
        'risks': risks,
        'summary': {
            'total': len(risks),
            'critical': count_status('Critical'),
            'open': count_status('Open'),
            'monitoring': count_status('Monitoring'),
            'avgScore': _mean(r.get('score') or 0 for r in risks),
        },
        'byCategory': {
            category: sum(1 for r in risks if r.get('category') == category)
            for category in RISK_CATEGORIES
        },
    }
