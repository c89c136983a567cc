from __future__ import annotations

from labres.db.scheduler import Scheduler


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from labres.context.core import Context


def new_scheduler(context: Context | str, **kwargs: Any) -> Scheduler:
    """ Creates a scheduler operating on the given context, which may also
    be given by name. See :class:`~labres.db.scheduler.Scheduler`.

    """
    if isinstance(context, str):
        import labres
        context = labres.registry.get_context(context)

    return Scheduler(context, **kwargs)


__all__ = (
    'new_scheduler',
    'Scheduler'
)
