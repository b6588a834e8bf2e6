"""Structured progress records reported by ingestion collaborators.

A multi-step external pipeline (fetch, extract, convert, describe) reports
each step as a :class:`StepStatus` rather than raising; gaialink accepts or
rejects the resulting tables from these records instead of assuming the
pipeline succeeded.

```python
report = IngestReport.from_rows([
        ('metadata_retrieval', 'success', 'Retrieved metadata', {...}),
        ('download', 'error', 'Download failed', None),
])
report.accepted          # False
report.require_success() # raises IngestionRejected naming 'download'
```
"""

from gaialink.errors import IngestionRejected, MalformedInput

import dataclasses
import enum
from typing import Any, Dict, List, Optional

class StepState(enum.Enum):
    in_progress = 'in_progress'
    success = 'success'
    warning = 'warning'
    error = 'error'


@dataclasses.dataclass(frozen=True)
class StepStatus:
    step: str
    status: StepState
    message: str = ''
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_row(cls, row):
        """Build from a ``(step, status, message, details)`` tuple or a dict
        with those keys.
        """
        if isinstance(row, dict):
            row = (row.get('step'), row.get('status'), row.get('message', ''),
                    row.get('details'))
        step, status, message, details = (tuple(row) + (None,) * 4)[:4]
        if not step:
            raise MalformedInput(f'Step status without a step name: {row}')
        if isinstance(status, StepState):
            status = status.value
        try:
            state = StepState(str(status).lower())
        except ValueError:
            raise MalformedInput(f'Unknown status {status!r} for step {step!r}')
        return cls(step=step, status=state, message=message or '',
                details=details)


@dataclasses.dataclass
class IngestReport:
    steps: List[StepStatus] = dataclasses.field(default_factory=list)

    @classmethod
    def from_rows(cls, rows):
        return cls(steps=[StepStatus.from_row(r) for r in rows])

    def add(self, step, status, message='', details=None):
        self.steps.append(StepStatus(step, StepState(status), message, details))
        return self

    def final_states(self):
        """Last reported state of every step, in first-seen order. Collaborators
        report ``in_progress`` before ``success``, so only the last one
        counts.
        """
        states = {}
        for s in self.steps:
            states[s.step] = s
        return list(states.values())

    @property
    def failed_steps(self):
        return [s for s in self.final_states()
                if s.status in (StepState.error, StepState.in_progress)]

    @property
    def accepted(self):
        """True if at least one step was reported and every step finished
        without error.
        """
        return bool(self.steps) and not self.failed_steps

    def require_success(self):
        if not self.steps:
            raise IngestionRejected('Ingestion reported no steps')
        failed = self.failed_steps
        if failed:
            first = failed[0]
            if first.status is StepState.in_progress:
                raise IngestionRejected(
                        f'Ingestion step {first.step!r} never finished: '
                        f'{first.message}')
            raise IngestionRejected(
                    f'Ingestion step {first.step!r} failed: {first.message}')
        return self
