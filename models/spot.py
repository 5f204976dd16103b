from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()


class SpotRecord(db.Model):
    """车位持久化模型，保留调度引擎里车位的全部字段"""
    __tablename__ = 'parking_spots'

    spot_id = db.Column(db.Integer, primary_key=True, autoincrement=False, comment='车位编号')
    state = db.Column(db.String(16), nullable=False, default='IDLE', comment='车位状态')
    occupant = db.Column(db.String(64), nullable=True, comment='使用者ID')
    requested_duration_minutes = db.Column(db.Float, nullable=True, comment='充电时间(分钟)')
    move_started_at = db.Column(db.DateTime, nullable=True, comment='充电线开始移动时间')
    charge_started_at = db.Column(db.DateTime, nullable=True, comment='开始充电时间')
    waiting_eta_minutes = db.Column(db.Float, nullable=True, comment='预计等待时间(分钟)')
    generation = db.Column(db.Integer, nullable=False, default=0, comment='派线版本号')

    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now, comment='更新时间')

    def to_dict(self):
        return {
            'spot_id': self.spot_id,
            'state': self.state,
            'occupant': self.occupant,
            'requested_duration_minutes': self.requested_duration_minutes,
            'move_started_at': self.move_started_at,
            'charge_started_at': self.charge_started_at,
            'waiting_eta_minutes': self.waiting_eta_minutes,
            'generation': self.generation,
        }

    def __repr__(self):
        return f'<SpotRecord {self.spot_id} {self.state}>'


class QueueRecord(db.Model):
    """等候队列持久化模型"""
    __tablename__ = 'charging_queue'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    user_id = db.Column(db.String(64), nullable=False, comment='使用者ID')
    spot_id = db.Column(db.Integer, db.ForeignKey('parking_spots.spot_id'), nullable=False, comment='目标车位')
    requested_duration_minutes = db.Column(db.Float, nullable=False, comment='充电时间(分钟)')
    requested_at = db.Column(db.DateTime, nullable=False, comment='请求时间')
    sequence = db.Column(db.Integer, nullable=False, default=0, comment='同一时刻的先后顺序')

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'spot_id': self.spot_id,
            'requested_duration_minutes': self.requested_duration_minutes,
            'requested_at': self.requested_at,
            'sequence': self.sequence,
        }

    def __repr__(self):
        return f'<QueueRecord {self.user_id} -> {self.spot_id}>'
