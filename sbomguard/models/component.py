from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

UNKNOWN_VERSION = 'unknown'


class ComponentRef(BaseModel):
    """Reference from a finding back to the component it affects."""
    name: str
    version: str
    ecosystem: str = ''
    package_id: str = ''

    model_config = ConfigDict(frozen=True)


class Component(BaseModel):
    """A software component declared by an SBOM. Immutable once parsed."""
    name: str = Field(min_length=1)
    version: str = UNKNOWN_VERSION
    package_id: str = ''
    ecosystem: str = ''

    model_config = ConfigDict(frozen=True, extra='ignore')

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.ecosystem, self.name, self.version)

    @property
    def display_name(self) -> str:
        return f"{self.name}@{self.version}"

    def ref(self) -> ComponentRef:
        return ComponentRef(
            name=self.name,
            version=self.version,
            ecosystem=self.ecosystem,
            package_id=self.package_id,
        )
