from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .date_kst import kst_date_only

COUNSELING_DIVISIONS = [
    "진로",
    "성격",
    "대인관계",
    "가정 및 가족관계",
    "일탈 및 비행",
    "학교폭력 가해",
    "학교폭력 피해",
    "자해 및 자살",
    "정신건강",
    "컴퓨터 및 스마트폰 과사용",
    "정보제공",
    "기타",
]
ADVISORY_FIELDS = ["학교학습", "사회성발달", "정서발달", "진로발달", "행동발달", "기타"]
REPEAT_SETTINGS = ["해당 없음", "매주", "2주마다", "매월"]
APPOINTMENT_TYPES = ["개인상담", "집단상담", "학부모상담", "교원자문", "기타"]


def _require_text(value: str, message: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValueError(message)
    return text


def _date_field(value: Any, message: str) -> str:
    text = kst_date_only(value)
    if not text:
        raise ValueError(message)
    return text


def _two_digits(value: Any, lo: int, hi: int, message: str) -> str:
    try:
        num = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValueError(message)
    if not lo <= num <= hi:
        raise ValueError(message)
    return f"{num:02d}"


class StudentIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    class_: str = Field(alias="class")
    gender: Literal["남", "여"]
    status: Literal["상담중", "종결"] = "상담중"
    requester: Optional[Literal["학생", "학부모", "교사", "기타"]] = "학생"
    contact: Optional[str] = None
    email: Optional[str] = None
    counselingField: Optional[str] = None
    memo: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return _require_text(v, "이름을 입력해주세요.")

    @field_validator("class_")
    @classmethod
    def _class(cls, v: str) -> str:
        return _require_text(v, "학반을 입력해주세요.")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class StudentStatusIn(BaseModel):
    status: Literal["상담중", "종결"]


class AppointmentIn(BaseModel):
    studentName: str
    date: str
    startHour: str = "13"
    startMinute: str = "00"
    type: Literal["개인상담", "집단상담", "학부모상담", "교원자문", "기타"] = "개인상담"
    repeatSetting: Literal["해당 없음", "매주", "2주마다", "매월"] = "해당 없음"
    repeatCount: Optional[int] = Field(default=1, ge=1, le=100)
    memo: Optional[str] = ""

    @field_validator("studentName")
    @classmethod
    def _student_name(cls, v: str) -> str:
        return _require_text(v, "내담자 이름을 입력해주세요.")

    @field_validator("date", mode="before")
    @classmethod
    def _date(cls, v: Any) -> str:
        return _date_field(v, "날짜를 선택해주세요.")

    @field_validator("startHour", mode="before")
    @classmethod
    def _hour(cls, v: Any) -> str:
        return _two_digits(v, 0, 23, "시간을 선택해주세요.")

    @field_validator("startMinute", mode="before")
    @classmethod
    def _minute(cls, v: Any) -> str:
        return _two_digits(v, 0, 59, "분을 선택해주세요.")

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "title": f"{self.studentName} 학생 {self.type}",
            "studentName": self.studentName,
            "studentId": "",
            "date": self.date,
            "startTime": f"{self.startHour}:{self.startMinute}",
            "endTime": "",
            "type": self.type,
            "repeatSetting": self.repeatSetting,
            "memo": self.memo or "",
        }
        if self.repeatSetting != "해당 없음":
            doc["repeatCount"] = self.repeatCount or 1
        return doc


class CoCounselee(BaseModel):
    id: str
    name: str


class CounselingLogIn(BaseModel):
    counselingDate: str
    counselingHour: str = "13"
    counselingMinute: str = "00"
    counselingDuration: Optional[int] = Field(default=40, ge=0, le=1440)
    counselingMethod: Optional[Literal["면담", "전화상담", "사이버상담"]] = "면담"
    isAdvisory: bool = False
    isParentCounseling: bool = False
    advisoryField: Optional[Literal["학교학습", "사회성발달", "정서발달", "진로발달", "행동발달", "기타"]] = "기타"
    counselingDivision: Optional[str] = None
    mainIssues: str
    therapistComments: str = ""
    counselingGoals: str = ""
    sessionContent: str = ""
    nextSessionGoals: str = ""
    coCounselees: List[CoCounselee] = Field(default_factory=list)

    @field_validator("counselingDate", mode="before")
    @classmethod
    def _date(cls, v: Any) -> str:
        return _date_field(v, "날짜를 선택해주세요.")

    @field_validator("counselingHour", mode="before")
    @classmethod
    def _hour(cls, v: Any) -> str:
        return _two_digits(v, 0, 23, "시간을 선택해주세요.")

    @field_validator("counselingMinute", mode="before")
    @classmethod
    def _minute(cls, v: Any) -> str:
        return _two_digits(v, 0, 59, "분을 선택해주세요.")

    @field_validator("mainIssues")
    @classmethod
    def _main_issues(cls, v: str) -> str:
        return _require_text(v, "상담 내용을 입력해주세요.")

    @field_validator("counselingDivision")
    @classmethod
    def _division(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if v not in COUNSELING_DIVISIONS:
            raise ValueError("상담구분을 확인해주세요.")
        return v

    @model_validator(mode="after")
    def _dedupe_counselees(self) -> "CounselingLogIn":
        seen = set()
        unique: List[CoCounselee] = []
        for c in self.coCounselees:
            if c.id in seen:
                continue
            seen.add(c.id)
            unique.append(c)
        self.coCounselees = unique
        return self

    def to_document(self, student_id: str, student_name: str, default_division: str = "기타") -> Dict[str, Any]:
        return {
            "studentId": student_id,
            "studentName": student_name,
            "counselingDate": self.counselingDate,
            "counselingTime": f"{self.counselingHour}:{self.counselingMinute}",
            "counselingDuration": self.counselingDuration,
            "counselingMethod": self.counselingMethod,
            "isAdvisory": self.isAdvisory,
            "isParentCounseling": self.isParentCounseling,
            "advisoryField": self.advisoryField,
            "counselingDivision": self.counselingDivision or default_division,
            "mainIssues": self.mainIssues,
            "therapistComments": self.therapistComments or "",
            "counselingGoals": self.counselingGoals or "",
            "sessionContent": self.sessionContent or "",
            "nextSessionGoals": self.nextSessionGoals or "",
            "coCounselees": [c.model_dump() for c in self.coCounselees],
        }


class PsychologicalTestIn(BaseModel):
    testName: str
    testDate: str
    testHour: str = "13"
    testMinute: str = "00"
    testDuration: Optional[int] = Field(default=40, ge=0, le=1440)
    testMethod: Optional[str] = None
    results: str

    @field_validator("testName")
    @classmethod
    def _name(cls, v: str) -> str:
        return _require_text(v, "검사명을 입력해주세요.")

    @field_validator("results")
    @classmethod
    def _results(cls, v: str) -> str:
        return _require_text(v, "검사 결과를 입력해주세요.")

    @field_validator("testDate", mode="before")
    @classmethod
    def _date(cls, v: Any) -> str:
        return _date_field(v, "검사일을 선택해주세요.")

    @field_validator("testHour", mode="before")
    @classmethod
    def _hour(cls, v: Any) -> str:
        return _two_digits(v, 0, 23, "시간을 선택해주세요.")

    @field_validator("testMinute", mode="before")
    @classmethod
    def _minute(cls, v: Any) -> str:
        return _two_digits(v, 0, 59, "분을 선택해주세요.")

    def to_document(self, student_id: str, student_name: str) -> Dict[str, Any]:
        doc = {
            "studentId": student_id,
            "studentName": student_name,
            "testName": self.testName,
            "testDate": self.testDate,
            "testTime": f"{self.testHour}:{self.testMinute}",
            "testDuration": self.testDuration,
            "results": self.results,
        }
        if self.testMethod:
            doc["testMethod"] = self.testMethod
        return doc


class DocumentContentIn(BaseModel):
    content: str = ""


class TodoIn(BaseModel):
    task: str

    @field_validator("task")
    @classmethod
    def _task(cls, v: str) -> str:
        return _require_text(v, "할 일을 입력해주세요.")


class PostIn(BaseModel):
    title: str
    content: str

    @field_validator("title")
    @classmethod
    def _title(cls, v: str) -> str:
        return _require_text(v, "제목을 입력해주세요.")

    @field_validator("content")
    @classmethod
    def _content(cls, v: str) -> str:
        return _require_text(v, "내용을 입력해주세요.")


class CommentIn(BaseModel):
    content: str

    @field_validator("content")
    @classmethod
    def _content(cls, v: str) -> str:
        return _require_text(v, "댓글 내용을 입력해주세요.")


class SignupIn(BaseModel):
    email: str
    password: str
    displayName: Optional[str] = None


class LoginIn(BaseModel):
    email: str
    password: str


class PasswordChangeIn(BaseModel):
    currentPassword: str
    newPassword: str

    @model_validator(mode="after")
    def _differs(self) -> "PasswordChangeIn":
        if self.currentPassword == self.newPassword:
            raise ValueError("새 비밀번호는 현재 비밀번호와 달라야 합니다.")
        return self


class AccountDeleteIn(BaseModel):
    currentPassword: str
