from __future__ import annotations

from applyflow.browser.driver import PlaywrightDriver
from applyflow.browser.engine import AutomationService
from applyflow.browser.job_boards import JobBoardRegistry
from applyflow.config import get_settings
from applyflow.core.batch import BatchSessionManager
from applyflow.core.events import EventBus

_EVENT_BUS: EventBus | None = None
_REGISTRY: JobBoardRegistry | None = None
_DRIVER: PlaywrightDriver | None = None
_AUTOMATION: AutomationService | None = None
_BATCH_MANAGER: BatchSessionManager | None = None


def get_event_bus() -> EventBus:
    global _EVENT_BUS
    if _EVENT_BUS is None:
        _EVENT_BUS = EventBus()
    return _EVENT_BUS


def get_registry() -> JobBoardRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = JobBoardRegistry()
    return _REGISTRY


def get_driver() -> PlaywrightDriver:
    global _DRIVER
    if _DRIVER is None:
        _DRIVER = PlaywrightDriver(get_settings())
    return _DRIVER


def get_automation_service() -> AutomationService:
    global _AUTOMATION
    if _AUTOMATION is None:
        _AUTOMATION = AutomationService(get_driver(), get_settings(), registry=get_registry())
    return _AUTOMATION


def get_batch_manager() -> BatchSessionManager:
    global _BATCH_MANAGER
    if _BATCH_MANAGER is None:
        _BATCH_MANAGER = BatchSessionManager(
            get_automation_service(),
            registry=get_registry(),
            event_bus=get_event_bus(),
            settings=get_settings(),
        )
    return _BATCH_MANAGER


async def shutdown() -> None:
    global _DRIVER, _AUTOMATION, _BATCH_MANAGER
    if _DRIVER is not None:
        await _DRIVER.close()
    _DRIVER = None
    _AUTOMATION = None
    _BATCH_MANAGER = None


def reset_runtime() -> None:
    global _EVENT_BUS, _REGISTRY, _DRIVER, _AUTOMATION, _BATCH_MANAGER
    _EVENT_BUS = None
    _REGISTRY = None
    _DRIVER = None
    _AUTOMATION = None
    _BATCH_MANAGER = None
