from pydantic import BaseModel, Field


class FavoriteList(BaseModel):
    poi_ids: list[str]
    count: int


class FavoriteToggleResult(BaseModel):
    poi_id: str
    favorited: bool


class FavoriteMergeRequest(BaseModel):
    poi_ids: list[str] = Field(default_factory=list, max_length=1000)
