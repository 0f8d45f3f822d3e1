from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, List, Optional


CURRENT = "current"
ARCHIVAL = "archival"


@dataclass(frozen=True)
class DatasetSpec:
    id: str
    label: str
    generation: str
    requires_extra_params: bool = False

    @property
    def name(self) -> str:
        return dataset_name(self.id)


def _ds(id: str, label: str, requires_extra_params: bool = False) -> DatasetSpec:
    return DatasetSpec(id=id, label=label, generation=generation_for(id), requires_extra_params=requires_extra_params)


def generation_for(dataset_id: str) -> str:
    return ARCHIVAL if dataset_id.startswith("/legacy/") else CURRENT


def dataset_name(dataset_id: str) -> str:
    return dataset_id.rstrip("/").split("/")[-1]


DATASETS: List[DatasetSpec] = [
    # e-katalog archive
    _ds("/v1/ekatalog-archive/paket-e-purchasing", "Paket E-Purchasing (Archive)"),
    _ds("/v1/ekatalog-archive/instansi-satker", "Instansi / Satker (Archive)"),
    _ds("/v1/ekatalog-archive/komoditas-detail", "Komoditas Detail (Archive)", True),
    _ds("/v1/ekatalog-archive/penyedia-detail", "Penyedia Detail (Archive)", True),
    _ds("/v1/ekatalog-archive/penyedia-distributor-detail", "Penyedia Distributor Detail (Archive)", True),
    # e-katalog live
    _ds("/v1/ekatalog/paket-e-purchasing", "Paket E-Purchasing (Live)"),
    _ds("/v1/ekatalog/penyedia-detail", "Penyedia Detail (Live)", True),
    # rup
    _ds("/v1/rup/master-satker", "RUP Master Satker"),
    _ds("/v1/rup/paket-anggaran-penyedia", "RUP Paket Anggaran Penyedia"),
    _ds("/v1/rup/paket-anggaran-swakelola", "RUP Paket Anggaran Swakelola"),
    _ds("/v1/rup/paket-penyedia-terumumkan", "RUP Paket Penyedia Terumumkan"),
    _ds("/v1/rup/paket-swakelola-terumumkan", "RUP Paket Swakelola Terumumkan"),
    _ds("/v1/rup/program-master", "RUP Program Master"),
    # tender
    _ds("/v1/tender/jadwal-tahapan-non-tender", "Tender: Jadwal Tahapan Non-Tender"),
    _ds("/v1/tender/jadwal-tahapan-tender", "Tender: Jadwal Tahapan Tender"),
    _ds("/v1/tender/non-tender-ekontrak-kontrak", "Tender: Non-Tender Ekontrak Kontrak"),
    _ds("/v1/tender/non-tender-pengumuman", "Tender: Non-Tender Pengumuman"),
    _ds("/v1/tender/non-tender-selesai", "Tender: Non-Tender Selesai"),
    _ds("/v1/tender/pencatatan-non-tender", "Tender: Pencatatan Non-Tender"),
    _ds("/v1/tender/pencatatan-non-tender-realisasi", "Tender: Pencatatan Non-Tender Realisasi"),
    _ds("/v1/tender/pencatatan-swakelola", "Tender: Pencatatan Swakelola"),
    _ds("/v1/tender/pencatatan-swakelola-realisasi", "Tender: Pencatatan Swakelola Realisasi"),
    _ds("/v1/tender/pengumuman", "Tender: Pengumuman"),
    _ds("/v1/tender/peserta-tender", "Tender: Peserta Tender"),
    _ds("/v1/tender/tender-ekontrak-kontrak", "Tender: Tender Ekontrak Kontrak"),
    _ds("/v1/tender/tender-selesai-nilai", "Tender: Tender Selesai Nilai"),
    # legacy tender
    _ds("/legacy/tender/jadwal-tahapan-non-tender", "Legacy: Jadwal Tahapan Non-Tender"),
    _ds("/legacy/tender/non-tender-ekontrak-kontrak", "Legacy: Non-Tender Ekontrak Kontrak"),
    _ds("/legacy/tender/non-tender-selesai", "Legacy: Non-Tender Selesai"),
    _ds("/legacy/tender/pencatatan-non-tender-realisasi", "Legacy: Pencatatan Non-Tender Realisasi"),
    _ds("/legacy/tender/pencatatan-swakelola-realisasi", "Legacy: Pencatatan Swakelola Realisasi"),
    _ds("/legacy/tender/peserta-tender", "Legacy: Peserta Tender"),
    _ds("/legacy/tender/tender-selesai-nilai", "Legacy: Tender Selesai Nilai"),
    _ds("/legacy/tender/jadwal-tahapan-tender", "Legacy: Jadwal Tahapan Tender"),
    _ds("/legacy/tender/non-tender-pengumuman", "Legacy: Non-Tender Pengumuman"),
    _ds("/legacy/tender/pencatatan-non-tender", "Legacy: Pencatatan Non-Tender"),
    _ds("/legacy/tender/pencatatan-swakelola", "Legacy: Pencatatan Swakelola"),
    _ds("/legacy/tender/pengumuman", "Legacy: Pengumuman"),
    _ds("/legacy/tender/tender-ekontrak-kontrak", "Legacy: Tender Ekontrak Kontrak"),
    # legacy rup
    _ds("/legacy/rup/master-satker", "Legacy: RUP Master Satker"),
    _ds("/legacy/rup/paket-anggaran-swakelola", "Legacy: RUP Paket Anggaran Swakelola"),
    _ds("/legacy/rup/paket-swakelola-terumumkan", "Legacy: RUP Paket Swakelola Terumumkan"),
    _ds("/legacy/rup/paket-anggaran-penyedia", "Legacy: RUP Paket Anggaran Penyedia"),
    _ds("/legacy/rup/paket-penyedia-terumumkan", "Legacy: RUP Paket Penyedia Terumumkan"),
    _ds("/legacy/rup/program-master", "Legacy: RUP Program Master"),
    # legacy e-katalog
    _ds("/legacy/ekatalog-archive/instansi-satker", "Legacy: Instansi Satker (Archive)"),
    _ds("/legacy/ekatalog-archive/paket-e-purchasing", "Legacy: Paket E-Purchasing (Archive)"),
    _ds("/legacy/ekatalog-archive/penyedia-distributor-detail", "Legacy: Penyedia Distributor Detail", True),
    _ds("/legacy/ekatalog-archive/komoditas-detail", "Legacy: Komoditas Detail", True),
    _ds("/legacy/ekatalog-archive/penyedia-detail", "Legacy: Penyedia Detail (Archive)", True),
    _ds("/legacy/ekatalog/penyedia-detail", "Legacy: Penyedia Detail (Live)", True),
    _ds("/legacy/ekatalog/paket-e-purchasing", "Legacy: Paket E-Purchasing (Live)"),
]

_BY_ID: Dict[str, DatasetSpec] = {spec.id: spec for spec in DATASETS}

# Longest prefix first so /v1/ekatalog-archive/ wins over /v1/ekatalog/.
FOLDER_MAPPING = {
    "/v1/ekatalog-archive/": "ekatalog-archive",
    "/v1/ekatalog/": "ekatalog",
    "/v1/rup/": "rup",
    "/v1/tender/": "tender",
    "/legacy/ekatalog-archive/": "legacy/ekatalog-archive",
    "/legacy/ekatalog/": "legacy/ekatalog",
    "/legacy/rup/": "legacy/rup",
    "/legacy/tender/": "legacy/tender",
}


def get_dataset(dataset_id: str) -> Optional[DatasetSpec]:
    return _BY_ID.get(dataset_id)


def dataset_label(dataset_id: str) -> str:
    spec = _BY_ID.get(dataset_id)
    return spec.label if spec else dataset_id


def syncable_datasets() -> List[DatasetSpec]:
    return [spec for spec in DATASETS if not spec.requires_extra_params]


def is_syncable(dataset_id: str) -> bool:
    spec = _BY_ID.get(dataset_id)
    return spec is None or not spec.requires_extra_params


def folder_for(dataset_id: str) -> str:
    for prefix in sorted(FOLDER_MAPPING, key=len, reverse=True):
        if dataset_id.startswith(prefix):
            return FOLDER_MAPPING[prefix]
    return "other"


def storage_path(base_path: str, dataset_id: str, period: str, extension: str) -> str:
    folder = folder_for(dataset_id)
    return os.path.join(base_path, *folder.split("/"), f"{dataset_name(dataset_id)}_{period}.{extension}")
