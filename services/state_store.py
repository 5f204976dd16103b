"""
调度状态的持久化：车位表 + 等候队列表整体覆盖写入。
需要在 app context 中调用。
"""
from typing import Dict, List, Tuple

from models.spot import db, SpotRecord, QueueRecord

_SPOT_FIELDS = (
    'state',
    'occupant',
    'requested_duration_minutes',
    'move_started_at',
    'charge_started_at',
    'waiting_eta_minutes',
    'generation',
)


def ensure_spots(spot_ids) -> None:
    """补齐缺少的车位记录"""
    existing = {r.spot_id for r in SpotRecord.query.all()}
    added = 0
    for spot_id in spot_ids:
        if spot_id not in existing:
            db.session.add(SpotRecord(spot_id=spot_id, state='IDLE', generation=0))
            added += 1
    if added:
        db.session.commit()


def save_state(snapshot: Dict) -> None:
    try:
        records = {r.spot_id: r for r in SpotRecord.query.all()}
        for spot in snapshot['spots']:
            record = records.get(spot['spot_id'])
            if record is None:
                record = SpotRecord(spot_id=spot['spot_id'])
                db.session.add(record)
            for field in _SPOT_FIELDS:
                setattr(record, field, spot[field])

        QueueRecord.query.delete()
        for entry in snapshot['queue']:
            db.session.add(QueueRecord(**entry))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def load_state() -> Tuple[List[Dict], List[Dict]]:
    spots = [r.to_dict() for r in SpotRecord.query.order_by(SpotRecord.spot_id).all()]
    queue = [
        r.to_dict() for r in
        QueueRecord.query.order_by(QueueRecord.requested_at, QueueRecord.sequence).all()
    ]
    return spots, queue
