from .filters import FILTERS, Filter, apply_filters, build_filters
from .selectors import (
    FieldSelector,
    build_selector_map,
    extract_field,
    extract_json_field,
    lookup_path,
)
from .userinfo import (
    RequestConfig,
    UserInfoConfig,
    UserInfoProcess,
    UserInfoResult,
    apply_user_info_fields,
    independent_step_count,
    run_user_info_process,
)

__all__ = [
    "FILTERS",
    "Filter",
    "apply_filters",
    "build_filters",
    "FieldSelector",
    "build_selector_map",
    "extract_field",
    "extract_json_field",
    "lookup_path",
    "RequestConfig",
    "UserInfoConfig",
    "UserInfoProcess",
    "UserInfoResult",
    "apply_user_info_fields",
    "independent_step_count",
    "run_user_info_process",
]
