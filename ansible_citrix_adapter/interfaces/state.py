from typing import Iterable

from pydantic import BaseModel


class BaseState(BaseModel):
    """
    Shape shared by a kind's desired configuration and its observed state.

    Fields the remote API never returns stay ``None`` after a refresh and are
    filled back in from the locally held value with ``copy_through``.
    """

    class Config:
        extra = "forbid"
        validate_assignment = True

    def copy_through(self, prior: "BaseState", fields: Iterable[str]) -> "BaseState":
        """
        Returns a copy where each of ``fields`` the remote did not report keeps
        the value held in ``prior``.
        """
        if prior is None:
            return self
        updates = {}
        for name in fields:
            if getattr(self, name, None) is None:
                prior_value = getattr(prior, name, None)
                if prior_value is not None:
                    updates[name] = prior_value
        return self.model_copy(update=updates) if updates else self
