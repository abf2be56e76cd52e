"""DNS component - hosted zone lookup and TLS certificate.

The hosted zone must already exist and be delegated to the account; it is
never created implicitly. The certificate covers ``subdomain.domain`` plus the
extra names and is validated through DNS records in that zone.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from components.base import Component, ComponentOutput
from components.options import DnsOptions
from providers.base import ResourceHandle


@dataclass(frozen=True)
class DnsOutput(ComponentOutput):
    zone: ResourceHandle
    zone_id: Any
    certificate: ResourceHandle
    certificate_arn: Any
    fqdn: str


class DnsComponent(Component):
    """Route 53 zone lookup plus a DNS-validated ACM certificate."""

    kind = "dns"
    label = "DNS"
    type_token = "appstack:dns:Certificate"

    options: DnsOptions

    def _provision(self, inputs: Mapping[str, ComponentOutput]) -> DnsOutput:
        opts = self.options
        # ACM reports one validation option per distinct name
        names = opts.certificate_names

        # Raises ResourceNotFoundError when the domain is not delegated here
        zone = self.provider.lookup_resource("route53.Zone", name=opts.domain)
        zone_id = self._read(zone, "zone_id")

        certificate = self._create(
            "certificate",
            "acm.Certificate",
            domain_name=opts.fqdn,
            subject_alternative_names=names[1:],
            validation_method="DNS",
        )

        # One record per requested name; names sharing a validation record overwrite
        validation_fqdns = []
        for i in range(len(names)):
            option = f"domain_validation_options.{i}"
            record = self._create(
                f"validation-{i}",
                "route53.Record",
                zone_id=zone_id,
                name=self._read(certificate, f"{option}.resource_record_name"),
                type=self._read(certificate, f"{option}.resource_record_type"),
                records=[self._read(certificate, f"{option}.resource_record_value")],
                ttl=60,
                allow_overwrite=True,
            )
            validation_fqdns.append(self._read(record, "fqdn"))

        validation = self._create(
            "certificate-validation",
            "acm.CertificateValidation",
            certificate_arn=self._read(certificate, "arn"),
            validation_record_fqdns=validation_fqdns,
        )

        return DnsOutput(
            zone=zone,
            zone_id=zone_id,
            certificate=certificate,
            # Consumers wait for validation, not just for the request
            certificate_arn=self._read(validation, "certificate_arn"),
            fqdn=opts.fqdn,
        )
