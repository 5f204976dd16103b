import threading
from datetime import datetime, timedelta
from typing import Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from scheduler_core import Scheduler, SystemClock
from services import state_store
from utils.logger import get_logger

logger = get_logger(__name__)


class ChargingScheduleService:
    """充电线调度服务 - 把调度引擎接到定时器、数据库和 WebSocket 上"""

    def __init__(self, app=None, socketio=None, clock=None):
        self.app = app
        self.socketio = socketio
        self.clock = clock or SystemClock()
        self.engine: Optional[Scheduler] = None
        self.persist_lock = threading.Lock()

        self.scheduler = BackgroundScheduler()
        self._initialized = False

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """初始化应用"""
        self.app = app
        cfg = app.config

        spot_ids = list(range(1, int(cfg['SPOT_COUNT']) + 1))
        self.engine = Scheduler(
            spot_ids,
            clock=self.clock,
            cable_move_seconds=cfg['CABLE_MOVE_SECONDS'],
            finish_linger_seconds=cfg['FINISH_LINGER_SECONDS'],
            arrival_hook=self._schedule_arrival_job,
        )

        with app.app_context():
            state_store.ensure_spots(spot_ids)
            if cfg['RESET_ON_STARTUP']:
                self.engine.reset_all()
            else:
                spots, queue = state_store.load_state()
                self.engine.restore_state(spots, queue)
            self.persist()

        if cfg['SCHEDULER_AUTOSTART']:
            self._setup_scheduled_jobs()
            self.scheduler.start()

        self._initialized = True
        logger.info("充电线调度服务已启动，共 %s 个车位", len(spot_ids))

    def _setup_scheduled_jobs(self):
        """设置定时任务"""
        jobs = [
            {
                "id": "charge_tick",
                "func": self.tick,
                "trigger": "interval",
                "seconds": self.app.config['TICK_INTERVAL_SECONDS'],
                "max_instances": 1,
                "coalesce": True,
            },
            {
                "id": "engine_event_poller",
                "func": self.poll_engine_events,
                "trigger": "interval",
                "seconds": self.app.config['EVENT_POLL_SECONDS'],
                "misfire_grace_time": 1,
            },
        ]

        for job in jobs:
            if self.scheduler.get_job(job["id"]):
                self.scheduler.remove_job(job["id"])
            self.scheduler.add_job(**job)

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    # ------------- 对外操作 ---------------------------------------------
    def request_charging(self, user_id, spot_id, duration_minutes):
        result = self.engine.request_charging(user_id, spot_id, duration_minutes)
        self.persist()
        self.broadcast_status_update()
        return result

    def cancel_charging(self, user_id, spot_id):
        result = self.engine.cancel_charging(user_id, spot_id)
        self.persist()
        self.broadcast_status_update()
        return result

    def reset_all(self):
        self.engine.reset_all()
        self.persist()
        self.broadcast_status_update()

    def get_spot_view(self, spot_id):
        return self.engine.get_spot_view(spot_id)

    def get_all_spots(self):
        return self.engine.get_all_spots()

    def get_queue_view(self):
        return self.engine.get_queue_view()

    def get_charging_spot(self):
        return self.engine.get_charging_spot()

    def get_moving_spot(self):
        return self.engine.get_moving_spot()

    # ------------- 定时任务 ---------------------------------------------
    def tick(self):
        """周期检查：移线到位、充电结束、结束车位释放"""
        if self.engine.tick():
            self.persist()

    def _schedule_arrival_job(self, spot_id: int, generation: int, delay_seconds: float):
        # 后台任务未启动时（测试环境）由 tick 兜底
        if not self.scheduler.running:
            return
        self.scheduler.add_job(
            self._on_cable_arrived,
            trigger="date",
            run_date=self.clock.now() + timedelta(seconds=delay_seconds),
            args=[spot_id, generation],
            id=f"cable_arrival_{spot_id}_{generation}",
            replace_existing=True,
            misfire_grace_time=None,
        )

    def _on_cable_arrived(self, spot_id: int, generation: int):
        if self.engine.on_cable_arrived(spot_id, generation):
            self.persist()
            self.broadcast_status_update()

    def poll_engine_events(self):
        """把引擎事件转发到 WebSocket"""
        events = self.engine.pop_events()
        if not events:
            return
        for event in events:
            logger.debug("引擎事件: %s", event.get("type"))
        self.broadcast_status_update()

    # ------------- 持久化 / 广播 ----------------------------------------
    def persist(self):
        if self.app is None:
            return
        with self.persist_lock:
            snapshot = self.engine.export_state()
            try:
                with self.app.app_context():
                    state_store.save_state(snapshot)
            except Exception:
                logger.exception("保存调度状态失败")

    def broadcast_status_update(self):
        """广播状态更新"""
        if not self.socketio:
            return
        try:
            self.socketio.emit('status_update', self.get_system_status_for_ui(), namespace='/')
        except Exception:
            logger.exception("广播状态更新错误")

    def get_system_status_for_ui(self) -> Dict:
        """获取系统状态用于UI显示"""
        charging = self.engine.get_charging_spot()
        moving = self.engine.get_moving_spot()
        return {
            'spots': [v.to_dict() for v in self.engine.get_all_spots()],
            'queue': [v.to_dict() for v in self.engine.get_queue_view()],
            'charging_spot': charging.spot_id if charging else None,
            'moving_spot': moving.spot_id if moving else None,
            'timestamp': datetime.now().isoformat(),
        }
