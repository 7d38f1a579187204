"""Usage metering and analytics.

``UsageMeter.record_usage`` is the single ingestion point for AI invocation
outcomes: it writes one immutable ``UsageLog`` and, in the same transaction,
folds the tokens/cost into the conversation and bumps the template's usage
counter. Every read below is computed from ``usage_logs`` alone and returns
zero-valued structures when nothing matches.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from aicore.config import get_settings
from aicore.exceptions import ValidationError
from aicore.models.conversation import Conversation
from aicore.models.prompt_template import PromptTemplate
from aicore.models.registry import AIModel, ProviderService
from aicore.models.usage_log import OperationType, UsageLog, UsageStatus
from aicore.services.conversation_ledger import ConversationLedger
from aicore.services.periods import PeriodLike, calendar_days, day_bounds, window_start
from aicore.services.registry import ModelRegistry, UNKNOWN_SERVICE
from aicore.services.template_engine import TemplateService
from aicore.utils.clock import utcnow

logger = logging.getLogger(__name__)

UNKNOWN_MODEL = "Unknown"


def compute_percentage_change(old_value: float, new_value: float) -> float:
    """Relative change in percent. A zero baseline yields 100 (growth) or 0."""
    old_value = old_value or 0
    new_value = new_value or 0
    if old_value == 0:
        return 100.0 if new_value > 0 else 0.0
    return (new_value - old_value) / old_value * 100


def _success_rate(successful: int, total: int) -> float:
    return (successful / total) * 100 if total else 0.0


def _coerce(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(
            f"Invalid {field_name}: {value!r}",
            {"field": field_name, "allowed": [e.value for e in enum_cls]},
        )


def _non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"'{field_name}' must be a non-negative integer", {"field": field_name})
    return value


class UsageMeter:
    def __init__(self, db: Session):
        self.db = db
        self.registry = ModelRegistry(db)
        self.ledger = ConversationLedger(db)
        self.templates = TemplateService(db)
        self._places = get_settings().cost_decimal_places

    # -- write path ----------------------------------------------------------

    def compute_cost(self, model: AIModel, input_tokens: int, output_tokens: int) -> float:
        input_rate, output_rate = self.registry.get_rates(model)
        return round(input_tokens * input_rate + output_tokens * output_rate, self._places)

    def record_usage(
        self,
        user_id: int,
        model: Union[AIModel, int],
        operation_type: Union[str, OperationType],
        input_tokens: int,
        output_tokens: int,
        response_time_ms: Optional[int],
        status: Union[str, UsageStatus],
        context_type: Optional[str] = None,
        context_id: Optional[int] = None,
        conversation: Union[Conversation, int, None] = None,
        template: Union[PromptTemplate, int, None] = None,
        prompt: Optional[str] = None,
        response: Optional[str] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> UsageLog:
        operation = _coerce(OperationType, operation_type, "operation_type")
        outcome = _coerce(UsageStatus, status, "status")
        input_tokens = _non_negative_int(input_tokens, "input_tokens")
        output_tokens = _non_negative_int(output_tokens, "output_tokens")
        if response_time_ms is not None:
            response_time_ms = _non_negative_int(response_time_ms, "response_time_ms")

        model = self.registry.get_model(model)
        if isinstance(conversation, int):
            conversation = self.ledger.get(conversation)
        if isinstance(template, int):
            template = self.templates.get(template)

        log = UsageLog(
            user_id=user_id,
            model_id=model.id,
            conversation_id=conversation.id if conversation is not None else None,
            template_id=template.id if template is not None else None,
            operation_type=operation.value,
            context_type=context_type,
            context_id=context_id,
            prompt=prompt,
            response=response,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost=self.compute_cost(model, input_tokens, output_tokens),
            response_time_ms=response_time_ms,
            status=outcome.value,
            error_message=error_message,
            metadata_=dict(metadata or {}),
            created_at=utcnow(),
        )

        try:
            self.db.add(log)
            self.db.flush()
            if conversation is not None:
                self.ledger.record_usage(conversation, log, commit=False)
            if template is not None:
                self.templates.increment_usage(template, commit=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(log)
        if conversation is not None:
            self.db.refresh(conversation)
        if template is not None:
            self.db.refresh(template)

        logger.info(
            f"Recorded {operation.value} usage #{log.id}: user={user_id} model={model.slug} "
            f"status={outcome.value} tokens={log.total_tokens} cost={log.cost}"
        )
        return log

    # -- reads ---------------------------------------------------------------

    def _scoped(self, query, since: datetime, user_id: Optional[int] = None, until: Optional[datetime] = None):
        query = query.filter(UsageLog.created_at >= since)
        if until is not None:
            query = query.filter(UsageLog.created_at < until)
        if user_id is not None:
            query = query.filter(UsageLog.user_id == user_id)
        return query

    def _money(self, value) -> float:
        return round(float(value or 0), self._places)

    def _summary(self, since: datetime, user_id: Optional[int] = None, until: Optional[datetime] = None) -> Dict[str, Any]:
        row = self._scoped(
            self.db.query(
                func.count(UsageLog.id),
                func.sum(case((UsageLog.status == UsageStatus.SUCCESS.value, 1), else_=0)),
                func.sum(UsageLog.total_tokens),
                func.sum(UsageLog.cost),
                func.avg(UsageLog.response_time_ms),
            ),
            since,
            user_id,
            until,
        ).one()
        total, successful, tokens, cost, avg_time = row
        total = total or 0
        successful = int(successful or 0)
        return {
            "total_requests": total,
            "successful_requests": successful,
            "failed_requests": total - successful,
            "total_tokens": int(tokens or 0),
            "total_cost": self._money(cost),
            "avg_response_time": round(float(avg_time), 2) if avg_time is not None else 0.0,
            "success_rate": _success_rate(successful, total),
        }

    def get_usage_stats(self, period: PeriodLike, user_id: Optional[int] = None) -> Dict[str, Any]:
        return self._summary(window_start(period, utcnow()), user_id)

    def get_daily_usage(self, period: PeriodLike, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """One entry per calendar day in the window, oldest first, zero-filled."""
        days = calendar_days(period, utcnow())
        since, _ = day_bounds(days[0])

        day = func.date(UsageLog.created_at)
        rows = self._scoped(
            self.db.query(
                day,
                func.count(UsageLog.id),
                func.sum(UsageLog.total_tokens),
                func.sum(UsageLog.cost),
                func.avg(UsageLog.response_time_ms),
            ),
            since,
            user_id,
        ).group_by(day).all()
        by_day = {str(r[0])[:10]: r for r in rows}

        series = []
        for d in days:
            key = d.isoformat()
            row = by_day.get(key)
            if row is None:
                series.append({"date": key, "requests": 0, "tokens": 0, "cost": 0.0, "avg_response_time": 0.0})
                continue
            series.append({
                "date": key,
                "requests": row[1],
                "tokens": int(row[2] or 0),
                "cost": self._money(row[3]),
                "avg_response_time": round(float(row[4]), 2) if row[4] is not None else 0.0,
            })
        return series

    def _grouped(self, column, period: PeriodLike, user_id: Optional[int] = None, skip_null: bool = False):
        query = self._scoped(
            self.db.query(
                column,
                func.count(UsageLog.id),
                func.sum(UsageLog.total_tokens),
                func.sum(UsageLog.cost),
            ),
            window_start(period, utcnow()),
            user_id,
        )
        if skip_null:
            query = query.filter(column.isnot(None))
        rows = query.group_by(column).order_by(func.count(UsageLog.id).desc(), column).all()
        return [
            {"key": key, "count": count, "tokens": int(tokens or 0), "cost": self._money(cost)}
            for key, count, tokens, cost in rows
        ]

    def get_usage_by_operation(self, period: PeriodLike, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        return [
            {"operation_type": g.pop("key"), **g}
            for g in self._grouped(UsageLog.operation_type, period, user_id)
        ]

    def get_usage_by_model(self, period: PeriodLike, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        groups = self._grouped(UsageLog.model_id, period, user_id)
        names = dict(
            self.db.query(AIModel.id, AIModel.name)
            .filter(AIModel.id.in_([g["key"] for g in groups]))
            .all()
        ) if groups else {}
        return [
            {"model_id": g["key"], "model_name": names.get(g["key"], UNKNOWN_MODEL),
             "count": g["count"], "tokens": g["tokens"], "cost": g["cost"]}
            for g in groups
        ]

    def get_usage_by_context(self, period: PeriodLike, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        return [
            {"context_type": g.pop("key"), **g}
            for g in self._grouped(UsageLog.context_type, period, user_id, skip_null=True)
        ]

    def get_cost_breakdown(self, period: PeriodLike, user_id: Optional[int] = None) -> Dict[str, Any]:
        since = window_start(period, utcnow())

        total = self._scoped(self.db.query(func.sum(UsageLog.cost)), since, user_id).scalar()

        by_operation = {
            op: self._money(cost)
            for op, cost in self._scoped(
                self.db.query(UsageLog.operation_type, func.sum(UsageLog.cost)), since, user_id
            ).group_by(UsageLog.operation_type).all()
        }

        by_model: Dict[str, float] = {}
        model_rows = self._scoped(
            self.db.query(AIModel.name, func.sum(UsageLog.cost))
            .select_from(UsageLog)
            .outerjoin(AIModel, AIModel.id == UsageLog.model_id),
            since,
            user_id,
        ).group_by(UsageLog.model_id, AIModel.name).all()
        for name, cost in model_rows:
            key = name or UNKNOWN_MODEL
            by_model[key] = self._money(by_model.get(key, 0.0) + float(cost or 0))

        by_service: Dict[str, float] = {}
        service_rows = self._scoped(
            self.db.query(ProviderService.name, func.sum(UsageLog.cost))
            .select_from(UsageLog)
            .outerjoin(AIModel, AIModel.id == UsageLog.model_id)
            .outerjoin(ProviderService, ProviderService.id == AIModel.service_id),
            since,
            user_id,
        ).group_by(ProviderService.id, ProviderService.name).all()
        for name, cost in service_rows:
            key = name or UNKNOWN_SERVICE
            by_service[key] = self._money(by_service.get(key, 0.0) + float(cost or 0))

        return {
            "total_cost": self._money(total),
            "by_operation": by_operation,
            "by_model": by_model,
            "by_service": by_service,
        }

    def get_performance_metrics(self, period: PeriodLike, user_id: Optional[int] = None) -> Dict[str, Any]:
        timed = UsageLog.response_time_ms
        row = self._scoped(
            self.db.query(
                func.count(UsageLog.id),
                func.avg(timed),
                func.min(timed),
                func.max(timed),
                func.sum(timed * timed),
                func.sum(case((UsageLog.status == UsageStatus.SUCCESS.value, 1), else_=0)),
            ).filter(timed.isnot(None)),
            window_start(period, utcnow()),
            user_id,
        ).one()
        count, avg_time, min_time, max_time, sum_squares, successful = row
        if not count:
            return {
                "avg_response_time": 0.0,
                "min_response_time": 0,
                "max_response_time": 0,
                "stddev_response_time": 0.0,
                "success_rate": 0.0,
            }

        mean = float(avg_time)
        # Population standard deviation; clamp float noise below zero
        variance = max(0.0, float(sum_squares) / count - mean * mean)
        return {
            "avg_response_time": round(mean, 2),
            "min_response_time": int(min_time),
            "max_response_time": int(max_time),
            "stddev_response_time": round(math.sqrt(variance), 2),
            "success_rate": _success_rate(int(successful or 0), count),
        }

    def get_performance_by_model(self, period: PeriodLike) -> List[Dict[str, Any]]:
        rows = (
            self.db.query(
                UsageLog.model_id,
                AIModel.name,
                func.avg(UsageLog.response_time_ms),
                func.count(UsageLog.id),
                func.sum(case((UsageLog.status == UsageStatus.SUCCESS.value, 1), else_=0)),
            )
            .select_from(UsageLog)
            .outerjoin(AIModel, AIModel.id == UsageLog.model_id)
            .filter(
                UsageLog.created_at >= window_start(period, utcnow()),
                UsageLog.response_time_ms.isnot(None),
            )
            .group_by(UsageLog.model_id, AIModel.name)
            .order_by(func.count(UsageLog.id).desc())
            .all()
        )
        return [
            {
                "model_id": model_id,
                "model_name": name or UNKNOWN_MODEL,
                "avg_response_time": round(float(avg_time or 0), 2),
                "requests": requests,
                "success_rate": _success_rate(int(successful or 0), requests),
            }
            for model_id, name, avg_time, requests, successful in rows
        ]

    def get_error_stats(self, period: PeriodLike, user_id: Optional[int] = None) -> Dict[str, int]:
        rows = self._scoped(
            self.db.query(UsageLog.status, func.count(UsageLog.id))
            .filter(UsageLog.status != UsageStatus.SUCCESS.value),
            window_start(period, utcnow()),
            user_id,
        ).group_by(UsageLog.status).all()
        return {status: count for status, count in rows}

    def get_top_users(self, period: PeriodLike, limit: int = 10) -> List[Dict[str, Any]]:
        rows = (
            self.db.query(
                UsageLog.user_id,
                func.count(UsageLog.id).label("requests"),
                func.sum(UsageLog.total_tokens),
                func.sum(UsageLog.cost),
            )
            .filter(UsageLog.created_at >= window_start(period, utcnow()))
            .group_by(UsageLog.user_id)
            .order_by(func.count(UsageLog.id).desc(), UsageLog.user_id)
            .limit(limit)
            .all()
        )
        return [
            {"user_id": user_id, "requests": requests, "tokens": int(tokens or 0), "cost": self._money(cost)}
            for user_id, requests, tokens, cost in rows
        ]

    def get_quick_stats(self, user_id: Optional[int] = None) -> Dict[str, Any]:
        """Today against yesterday, with percentage changes."""
        now = utcnow()
        today_start, _ = day_bounds(now.date())
        yesterday_start = today_start - timedelta(days=1)

        def _day(since, until):
            summary = self._summary(since, user_id, until)
            return {
                "requests": summary["total_requests"],
                "tokens": summary["total_tokens"],
                "cost": summary["total_cost"],
                "success_rate": summary["success_rate"],
            }

        today = _day(today_start, today_start + timedelta(days=1))
        yesterday = _day(yesterday_start, today_start)
        return {
            "today": today,
            "yesterday": yesterday,
            "changes": {
                key: compute_percentage_change(yesterday[key], today[key])
                for key in ("requests", "tokens", "cost", "success_rate")
            },
        }
