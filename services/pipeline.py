"""
Best-effort follow-ups that run after a primary write has committed.

A follow-up failure is logged and recorded in the report but never reaches
the caller of the primary operation. Derived data (progress, streaks,
achievements) is recomputed on the next trigger anyway.
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.logger import logger

FollowUp = Callable[[], Awaitable[Any]]


@dataclass
class FollowUpResult:
    name: str
    ok: bool
    value: Any = None
    error: Optional[str] = None


@dataclass
class FollowUpReport:
    results: List[FollowUpResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed(self) -> List[str]:
        return [r.name for r in self.results if not r.ok]

    def get(self, name: str) -> Optional[FollowUpResult]:
        for result in self.results:
            if result.name == name:
                return result
        return None


class FollowUpPipeline:
    def __init__(self, db: AsyncSession, **context):
        self.db = db
        self.context = context
        self._steps: List[tuple] = []

    def add(self, name: str, step: FollowUp, when: bool = True) -> "FollowUpPipeline":
        if when:
            self._steps.append((name, step))
        return self

    async def run(self) -> FollowUpReport:
        report = FollowUpReport()
        for name, step in self._steps:
            try:
                value = await step()
            except Exception as e:
                logger.error("Follow-up failed", step=name, error=str(e), **self.context)
                # Leave the session usable for the remaining steps
                await self.db.rollback()
                report.results.append(FollowUpResult(name=name, ok=False, error=str(e)))
                continue
            report.results.append(FollowUpResult(name=name, ok=True, value=value))
        return report
