from pydantic import BaseModel, Field


class ProvisionChannelResult(BaseModel):
    success: bool
    stream_channel_id: str | None = None
    member_count: int = 0
    already_synced: bool = False
    skipped_members: list[str] = Field(default_factory=list)
    error: str | None = None


class MemberOperationResult(BaseModel):
    success: bool
    channel_id: str
    user_id: str
    stream_channel_id: str | None = None
    error: str | None = None


class JoinedChannel(BaseModel):
    id: str
    name: str
    stream_channel_id: str
    newly_joined: bool = False


class ChannelError(BaseModel):
    channel_id: str
    error: str


class SyncSupporterResult(BaseModel):
    success: bool
    added_to_channels: list[JoinedChannel] = Field(default_factory=list)
    errors: list[ChannelError] = Field(default_factory=list)
    error: str | None = None


class ResyncResult(BaseModel):
    success: bool
    creators: dict[str, SyncSupporterResult] = Field(default_factory=dict)
    error: str | None = None


class SyncSupporterRequest(BaseModel):
    creator_id: str
    announce: bool = False


class SyncChannelRequest(BaseModel):
    force: bool = False


class StreamTokenResponse(BaseModel):
    user_id: str
    token: str
    api_key: str | None = None
