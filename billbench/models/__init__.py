# Import all models here so Alembic's env.py can discover them via Base.metadata
from billbench.models.base import Base  # noqa: F401
from billbench.models.fee_schedule import FeeScheduleRow  # noqa: F401
from billbench.models.locality import GpciLocality, ZipLocality  # noqa: F401
