from .yaml_store import ChangeHandler, ChangeKind, YamlDefinitionStore, load_definition_file

__all__ = ["ChangeHandler", "ChangeKind", "YamlDefinitionStore", "load_definition_file"]
