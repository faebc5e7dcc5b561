from rocket.tasks.scheduler import Scheduler

__all__ = ['Scheduler']
