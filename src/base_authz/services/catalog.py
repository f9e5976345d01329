"""权限配置元数据目录。

静态枚举可配置的资源（含可过滤字段）、操作符与取值来源，
供规则配置界面使用，与运行时策略图无关。
"""

from dataclasses import asdict, dataclass
import math
from typing import Any

from base_authz.models.enums import DataOperator, DataValueType

STRING = "string"
NUMBER = "number"
BOOLEAN = "boolean"

_TRUE_TEXT = frozenset({"true", "1"})
_FALSE_TEXT = frozenset({"false", "0"})


@dataclass(frozen=True)
class ResourceField:
    key: str
    label: str
    type: str


@dataclass(frozen=True)
class ResourceDescriptor:
    key: str
    label: str
    fields: tuple[ResourceField, ...]

    def field_keys(self) -> frozenset[str]:
        return frozenset(item.key for item in self.fields)

    def field(self, key: str) -> ResourceField | None:
        return next((item for item in self.fields if item.key == key), None)


@dataclass(frozen=True)
class OptionDescriptor:
    key: str
    label: str
    description: str


VALUE_TYPES: tuple[OptionDescriptor, ...] = (
    OptionDescriptor(DataValueType.CURRENT_USER, "当前用户", "当前登录用户的ID"),
    OptionDescriptor(DataValueType.CURRENT_BASE, "当前基地", "当前选择的基地ID"),
    OptionDescriptor(DataValueType.CURRENT_USER_BASES, "用户关联基地", "当前用户关联的所有基地"),
    OptionDescriptor(DataValueType.CURRENT_USER_POINTS, "用户拥有的点位", "当前用户作为老板的所有点位"),
    OptionDescriptor(DataValueType.CURRENT_USER_DEALER_POINTS, "用户负责的点位", "当前用户作为经销商的所有点位"),
    OptionDescriptor(DataValueType.FIXED, "固定值", "指定的固定值"),
)

OPERATORS: tuple[OptionDescriptor, ...] = (
    OptionDescriptor(DataOperator.EQ, "等于", "字段值等于指定值"),
    OptionDescriptor(DataOperator.IN, "包含于", "字段值在指定列表中"),
    OptionDescriptor(DataOperator.CONTAINS, "包含", "字段值包含指定字符串"),
    OptionDescriptor(DataOperator.NOT_EQ, "不等于", "字段值不等于指定值"),
)


def _fields(*items: tuple[str, str, str]) -> tuple[ResourceField, ...]:
    return tuple(ResourceField(key, label, type_) for key, label, type_ in items)


RESOURCES: tuple[ResourceDescriptor, ...] = (
    # 基地管理
    ResourceDescriptor("base", "基地", _fields(("id", "基地ID", "number"), ("createdBy", "创建人ID", "string"))),
    ResourceDescriptor(
        "location",
        "直播间/仓库",
        _fields(("baseId", "基地ID", "number"), ("type", "类型", "string"), ("managerId", "负责人ID", "string")),
    ),
    ResourceDescriptor(
        "personnel",
        "人员",
        _fields(("baseId", "基地ID", "number"), ("type", "类型", "string"), ("userId", "用户ID", "string")),
    ),
    # 点位管理
    ResourceDescriptor(
        "point",
        "点位",
        _fields(
            ("id", "点位ID", "string"),
            ("ownerId", "老板ID", "string"),
            ("dealerId", "经销商ID", "string"),
            ("baseId", "基地ID", "number"),
            ("isActive", "是否启用", "boolean"),
        ),
    ),
    ResourceDescriptor(
        "pointOrder",
        "点位订单",
        _fields(("pointId", "点位ID", "string"), ("createdBy", "创建人ID", "string"), ("baseId", "基地ID", "number")),
    ),
    ResourceDescriptor("pointInventory", "点位库存", _fields(("pointId", "点位ID", "string"))),
    # 商品管理
    ResourceDescriptor(
        "goods",
        "商品",
        _fields(
            ("id", "商品ID", "string"),
            ("code", "商品编号", "string"),
            ("name", "商品名称", "string"),
            ("manufacturer", "厂家名称", "string"),
            ("categoryId", "品类ID", "string"),
            ("isActive", "状态", "boolean"),
            ("baseId", "基地ID", "number"),
            ("createdBy", "创建人ID", "string"),
        ),
    ),
    ResourceDescriptor(
        "goodsLocalSetting",
        "商品设置",
        _fields(
            ("id", "ID", "string"),
            ("goodsId", "商品ID", "string"),
            ("baseId", "基地ID", "number"),
            ("alias", "别名", "string"),
            ("retailPrice", "零售价(一箱)", "number"),
            ("packPrice", "平拆价(一包)", "number"),
            ("purchasePrice", "采购价", "number"),
            ("isActive", "状态", "boolean"),
        ),
    ),
    ResourceDescriptor(
        "category",
        "商品分类",
        _fields(("id", "分类ID", "string"), ("code", "分类编号", "string"), ("baseId", "基地ID", "number")),
    ),
    # 库存管理
    ResourceDescriptor(
        "inventory", "库存", _fields(("locationId", "位置ID", "number"), ("baseId", "基地ID", "number"))
    ),
    ResourceDescriptor(
        "purchaseOrder",
        "采购订单",
        _fields(
            ("baseId", "基地ID", "number"),
            ("createdBy", "创建人ID", "string"),
            ("targetLocationId", "目标位置ID", "number"),
        ),
    ),
    ResourceDescriptor(
        "arrivalOrder",
        "到货单",
        _fields(("baseId", "基地ID", "number"), ("createdBy", "创建人ID", "string"), ("locationId", "位置ID", "number")),
    ),
    ResourceDescriptor(
        "transferOrder",
        "调货单",
        _fields(
            ("baseId", "基地ID", "number"),
            ("createdBy", "创建人ID", "string"),
            ("fromLocationId", "来源位置ID", "number"),
            ("toLocationId", "目标位置ID", "number"),
        ),
    ),
    ResourceDescriptor(
        "stockConsumption",
        "消耗记录",
        _fields(
            ("baseId", "基地ID", "number"),
            ("createdBy", "创建人ID", "string"),
            ("locationId", "位置ID", "number"),
            ("personnelId", "人员ID", "string"),
        ),
    ),
    ResourceDescriptor(
        "stockOutOrder",
        "出库单",
        _fields(("baseId", "基地ID", "number"), ("createdBy", "创建人ID", "string"), ("locationId", "位置ID", "number")),
    ),
    # 直播经营
    ResourceDescriptor(
        "anchorProfit",
        "主播利润",
        _fields(
            ("baseId", "基地ID", "number"),
            ("handlerId", "主播ID", "string"),
            ("profitDate", "日期", "date"),
        ),
    ),
    # 用户管理
    ResourceDescriptor("user", "用户", _fields(("id", "用户ID", "string"), ("createdBy", "创建人ID", "string"))),
)

_RESOURCE_INDEX = {resource.key: resource for resource in RESOURCES}


def get_resource(key: str) -> ResourceDescriptor | None:
    """按资源标识查找目录项。"""
    return _RESOURCE_INDEX.get(key)


def metadata() -> dict[str, list[dict]]:
    """返回配置界面使用的完整元数据。"""
    return {
        "value_types": [asdict(item) for item in VALUE_TYPES],
        "operators": [asdict(item) for item in OPERATORS],
        "resources": [
            {
                "key": resource.key,
                "label": resource.label,
                "fields": [asdict(item) for item in resource.fields],
            }
            for resource in RESOURCES
        ],
    }


def field_type(resource: str, field: str) -> str:
    """返回字段声明类型，目录中不存在的字段按字符串处理。"""
    descriptor = get_resource(resource)
    item = descriptor.field(field) if descriptor is not None else None
    return item.type if item is not None else STRING


def parse_field_value(type_: str, raw: str) -> Any:
    """把固定值文本转换为字段声明类型，无法转换时抛出 ValueError。"""
    text = raw.strip()
    if type_ == BOOLEAN:
        lowered = text.lower()
        if lowered in _TRUE_TEXT:
            return True
        if lowered in _FALSE_TEXT:
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if type_ == NUMBER:
        try:
            return int(text)
        except ValueError:
            number = float(text)
        if not math.isfinite(number):
            raise ValueError(f"not a finite number: {raw!r}")
        return number
    return text


def format_field_value(value: Any) -> str:
    """类型化取值的规范文本形式，用于持久化。"""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
