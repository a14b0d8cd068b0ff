# shopcheckout/schemas/base.py
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Базовая схема для данных бэкенда маркетплейса: в Python поля в snake_case,
    на проводе - camelCase. Принимаются оба варианта имен.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
