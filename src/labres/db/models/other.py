from __future__ import annotations


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from typing import Protocol

    import labres.db.models as _models

    class _Models(Protocol):
        Room: type[_models.Room]
        Workstation: type[_models.Workstation]
        Reservation: type[_models.Reservation]
        ClassSchedule: type[_models.ClassSchedule]
        QuotaHolder: type[_models.QuotaHolder]
        UsageSession: type[_models.UsageSession]


models = None


class OtherModels:
    """ Mixin class which allows for all models to access the other model
    classes without causing circular imports. """

    @property
    def models(self) -> _Models:
        global models
        if not models:
            from labres.db import models as m_
            models = m_

        return models
