from __future__ import annotations
"""Allowed status transitions for lifecycle records (purchase orders, petty cash requests).

    PO_FSM = TransitionValidator({'PENDING': {'ORDERED'}, 'ORDERED': {'RECEIVED'}, 'RECEIVED': set()})
    PO_FSM.assert_can_transition(po.status, 'RECEIVED')

Invalid moves raise ValidationError (rendered as 400).
"""
from typing import Dict, Iterable, Set

from backoffice.errors import ValidationError


class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status'):
        self.graph = graph
        self.field_name = field_name

    @property
    def states(self) -> Iterable[str]:
        return self.graph.keys()

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, set())

    def assert_can_transition(self, current: str, target: str):
        if target not in self.graph:
            raise ValidationError(f'{self.field_name} invalid')
        if not self.can_transition(current, target):
            raise ValidationError(f'Invalid {self.field_name} transition {current} -> {target}')
        return True


__all__ = ['TransitionValidator']
