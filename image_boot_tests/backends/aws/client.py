"""AWS client: S3 upload, snapshot import and EC2 instances."""

import asyncio
import logging
from collections.abc import AsyncGenerator, Mapping
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Self

import aioboto3

from image_boot_tests.backends.aws.config import AWSConfig
from image_boot_tests.backends.cloud import CloudClient
from image_boot_tests.exceptions import CleanupError, SetupError
from image_boot_tests.host import current_arch
from image_boot_tests.resources import release_after_failure
from image_boot_tests.ssh import DEFAULT_SSH_USER, create_user_data

log = logging.getLogger(__name__)

IMPORT_POLL_INTERVAL = 15.0

DISK_FORMATS: Mapping[str, str] = {
    ".vhd": "vhd",
    ".vhdx": "vhd",
    ".vmdk": "vmdk",
}

AMI_ARCHITECTURES: Mapping[str, str] = {
    "x86_64": "x86_64",
    "aarch64": "arm64",
}

ROOT_DEVICE = "/dev/sda1"


@dataclass(frozen=True, kw_only=True)
class AMI:
    """An image registered from an imported snapshot."""

    image_id: str
    snapshot_id: str


@dataclass(frozen=True, kw_only=True)
class AWSClient(CloudClient[AMI, str]):
    """Boots images in EC2. Instances are identified by their instance ID."""

    config: AWSConfig
    ec2: Any = field(repr=False)
    s3: Any = field(repr=False)
    ssh_user: str = DEFAULT_SSH_USER

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: AWSConfig, ssh_user: str = DEFAULT_SSH_USER
    ) -> AsyncGenerator[Self, None]:
        """Create client with managed EC2 and S3 client lifecycles."""
        session = aioboto3.Session(
            aws_access_key_id=config.access_key_id.get_secret_value(),
            aws_secret_access_key=config.secret_access_key.get_secret_value(),
            region_name=config.region,
        )
        async with AsyncExitStack() as stack:
            ec2 = await stack.enter_async_context(session.client("ec2"))
            s3 = await stack.enter_async_context(session.client("s3"))
            yield cls(config=config, ec2=ec2, s3=s3, ssh_user=ssh_user)

    async def upload(self, image_path: Path, name: str) -> AMI:
        """Upload to S3, import as a snapshot and register an AMI from it.

        The S3 object is only needed for the import and always deleted.

        Raises:
            SetupError: If EC2 cannot boot images of the host architecture,
                or the import fails

        """
        arch = current_arch()
        architecture = AMI_ARCHITECTURES.get(arch)
        if architecture is None:
            raise SetupError(f"EC2 cannot boot {arch} images")

        await self.s3.upload_file(str(image_path), self.config.bucket, name)
        s3_object = f"s3://{self.config.bucket}/{name}"
        try:
            snapshot_id = await self.import_snapshot(name, image_path)
        except BaseException as exc:
            await release_after_failure(exc, s3_object, self.delete_object, name)
            raise

        try:
            await self.delete_object(name)
        except Exception as exc:
            log.error(
                "Cannot delete %s, resources could have been leaked: %s", s3_object, exc
            )

        try:
            response = await self.ec2.register_image(
                Name=name,
                Architecture=architecture,
                RootDeviceName=ROOT_DEVICE,
                VirtualizationType="hvm",
                EnaSupport=True,
                BlockDeviceMappings=[
                    {"DeviceName": ROOT_DEVICE, "Ebs": {"SnapshotId": snapshot_id}}
                ],
            )
        except BaseException as exc:
            await release_after_failure(
                exc, f"snapshot {snapshot_id}", self.delete_snapshot, snapshot_id
            )
            raise

        return AMI(image_id=response["ImageId"], snapshot_id=snapshot_id)

    async def delete_object(self, key: str) -> None:
        await self.s3.delete_object(Bucket=self.config.bucket, Key=key)

    async def delete_snapshot(self, snapshot_id: str) -> None:
        await self.ec2.delete_snapshot(SnapshotId=snapshot_id)

    async def import_snapshot(self, key: str, image_path: Path) -> str:
        """Import an S3 object as an EBS snapshot and wait for completion."""
        disk_format = DISK_FORMATS.get(image_path.suffix, "raw")
        response = await self.ec2.import_snapshot(
            Description=key,
            DiskContainer={
                "Format": disk_format,
                "UserBucket": {"S3Bucket": self.config.bucket, "S3Key": key},
            },
        )
        task_id = response["ImportTaskId"]
        log.info("Importing snapshot from s3://%s/%s (%s)", self.config.bucket, key, task_id)

        while True:
            tasks = await self.ec2.describe_import_snapshot_tasks(
                ImportTaskIds=[task_id]
            )
            detail = tasks["ImportSnapshotTasks"][0]["SnapshotTaskDetail"]
            status = detail.get("Status")
            if status == "completed":
                return str(detail["SnapshotId"])
            if status in ("deleting", "deleted"):
                raise SetupError(
                    f"Snapshot import {task_id} failed: {detail.get('StatusMessage')}"
                )
            log.debug("Snapshot import %s in status=%s", task_id, status)
            await asyncio.sleep(IMPORT_POLL_INTERVAL)

    async def delete_image(self, image: AMI) -> None:
        """Deregister the AMI and delete its snapshot."""
        failures: list[str] = []
        try:
            await self.ec2.deregister_image(ImageId=image.image_id)
        except Exception as exc:
            failures.append(f"cannot deregister {image.image_id}: {exc}")
        try:
            await self.ec2.delete_snapshot(SnapshotId=image.snapshot_id)
        except Exception as exc:
            failures.append(f"cannot delete snapshot {image.snapshot_id}: {exc}")
        if failures:
            raise CleanupError(failures)

    async def boot(self, image: AMI, public_key: str, name: str) -> str:
        """Run one instance of the AMI."""
        instance_type = (
            self.config.arm_instance_type
            if current_arch() == "aarch64"
            else self.config.instance_type
        )
        response = await self.ec2.run_instances(
            ImageId=image.image_id,
            InstanceType=instance_type,
            MinCount=1,
            MaxCount=1,
            UserData=create_user_data(public_key, self.ssh_user),
            TagSpecifications=[
                {"ResourceType": "instance", "Tags": [{"Key": "Name", "Value": name}]}
            ],
        )
        return str(response["Instances"][0]["InstanceId"])

    async def get_address(self, instance: str) -> str:
        """Wait for the instance to run and return its public IP."""
        await self.ec2.get_waiter("instance_running").wait(InstanceIds=[instance])
        response = await self.ec2.describe_instances(InstanceIds=[instance])
        description = response["Reservations"][0]["Instances"][0]
        address = description.get("PublicIpAddress")
        if not address:
            raise SetupError(f"Instance {instance} has no public IP address")
        return str(address)

    async def delete(self, instance: str) -> None:
        """Terminate the instance and wait until it is gone."""
        await self.ec2.terminate_instances(InstanceIds=[instance])
        await self.ec2.get_waiter("instance_terminated").wait(InstanceIds=[instance])
