"""数据源配置相关模型"""

from typing import List, Optional, Any, Literal
from pydantic import BaseModel, Field


class ColumnConfig(BaseModel):
    """数据源列配置"""
    id: int = Field(..., description="列ID")
    column_name: str = Field(..., description="物理列名")
    display_name: str = Field("", description="显示名称")
    description: Optional[str] = Field(None, description="列描述")
    data_type: str = Field("text", description="数据类型")
    is_filterable: bool = Field(False, description="可筛选")
    is_groupable: bool = Field(False, description="可分组")
    is_measure: bool = Field(False, description="度量值列")
    is_dimension: bool = Field(False, description="维度列")
    is_date_field: bool = Field(False, description="日期列")
    is_measure_type: bool = Field(False, description="度量类型列")
    is_time_period: bool = Field(False, description="时间周期（频率）列")
    format_type: Optional[str] = Field(None, description="格式类型")
    default_aggregation: Optional[str] = Field(None, description="默认聚合方式")
    sort_order: int = Field(0, description="排序序号")
    example_value: Optional[str] = Field(None, description="示例值")
    allowed_values: Optional[List[Any]] = Field(None, description="允许的取值枚举")


class DataSourceConfig(BaseModel):
    """数据源配置"""
    id: int = Field(..., description="数据源ID")
    name: str = Field(..., description="数据源名称")
    description: Optional[str] = Field(None, description="数据源描述")
    schema_name: str = Field(..., description="Schema 名称")
    table_name: str = Field(..., description="表名")
    data_source_type: Literal["measure-based", "table-based"] = Field("measure-based", description="数据源类型")
    is_active: bool = Field(True, description="是否启用")
    columns: List[ColumnConfig] = Field(default_factory=list, description="列配置（按 sort_order 排序）")

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"

    def column_names(self) -> List[str]:
        return [c.column_name for c in self.columns]

    def get_column(self, name: str) -> Optional[ColumnConfig]:
        for col in self.columns:
            if col.column_name == name:
                return col
        return None

    def filterable_columns(self) -> List[ColumnConfig]:
        return [c for c in self.columns if c.is_filterable]

    def groupable_columns(self) -> List[ColumnConfig]:
        return [c for c in self.columns if c.is_groupable]

    def measure_columns(self) -> List[ColumnConfig]:
        return [c for c in self.columns if c.is_measure]

    def dimension_columns(self) -> List[ColumnConfig]:
        return [c for c in self.columns if c.is_dimension]


class ColumnMapping(BaseModel):
    """列角色映射（按数据源解析）"""
    date_field: str = Field(..., description="日期列")
    measure_field: str = Field(..., description="度量值列")
    measure_type_field: str = Field(..., description="度量类型列")
    time_period_field: str = Field(..., description="时间周期列")
    practice_field: Optional[str] = Field(None, description="诊所标识列")
    provider_field: Optional[str] = Field(None, description="医生标识列")
