from __future__ import annotations

from sqlalchemy import Column, String, DateTime, Text, Float

from app.db.session import Base


class SimulationStateRow(Base):
    """Latest serialized SimulatedVehicle per shipment."""

    __tablename__ = "simulation_states"

    shipment_id = Column(String, primary_key=True, index=True)
    status = Column(String, nullable=False)
    payload_json = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ActiveSimulation(Base):
    __tablename__ = "active_simulations"

    shipment_id = Column(String, primary_key=True, index=True)
    added_at = Column(DateTime(timezone=True), nullable=False)


class VehiclePositionRow(Base):
    """Last known position reported through the backend tick endpoint."""

    __tablename__ = "vehicle_positions"

    shipment_id = Column(String, primary_key=True, index=True)
    lon = Column(Float, nullable=False)
    lat = Column(Float, nullable=False)
    bearing = Column(Float, nullable=False, default=0.0)
    status = Column(String, nullable=False)
    reported_at = Column(Float, nullable=False)  # epoch seconds from the tick payload
    updated_at = Column(DateTime(timezone=True), nullable=False)
