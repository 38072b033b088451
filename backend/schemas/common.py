# schemas/common.py
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


# Base for wire models: camelCase on the wire, snake_case in Python
class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True

    def wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
