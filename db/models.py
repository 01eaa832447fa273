# db/models.py

from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

Base = declarative_base()


# Table Réservations de numéros (autorité d'unicité des numéros de devis)
class QuotationNumberReservation(Base):
    __tablename__ = "quotation_number_reservations"

    quotation_number = Column(String(64), primary_key=True)
    reserved_by = Column(String(120))
    reserved_at = Column(DateTime, server_default=func.now())
    quotation_id = Column(String(36), nullable=True)  # NULL tant que le devis n'est pas créé


# Table Devis
class QuotationRecord(Base):
    __tablename__ = "quotations"

    id = Column(String(36), primary_key=True)
    quotation_number = Column(String(64), nullable=False, unique=True, index=True)
    revision_number = Column(Integer, nullable=False, default=0)
    enquiry_id = Column(Integer, index=True)
    status = Column(String(20), nullable=False, default="DRAFT", index=True)
    payload = Column(Text, nullable=False)  # Quotation sérialisé (JSON)
    po_attachment_ref = Column(String(36), nullable=True)  # Document PO joint (une seule fois)
    created_by = Column(String(120))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    revisions = relationship("QuotationRevisionRecord", back_populates="quotation")
    status_history = relationship("QuotationStatusHistory", back_populates="quotation")


# Table Révisions archivées (contenu figé de chaque révision précédente)
class QuotationRevisionRecord(Base):
    __tablename__ = "quotation_revisions"
    __table_args__ = (UniqueConstraint("quotation_id", "revision_number", name="uq_quotation_revision"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    quotation_id = Column(String(36), ForeignKey("quotations.id"), nullable=False, index=True)
    revision_number = Column(Integer, nullable=False)
    payload = Column(Text, nullable=False)
    archived_by = Column(String(120))
    archived_at = Column(DateTime, server_default=func.now())

    quotation = relationship("QuotationRecord", back_populates="revisions")


# Table Historique des statuts
class QuotationStatusHistory(Base):
    __tablename__ = "quotation_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    quotation_id = Column(String(36), ForeignKey("quotations.id"), nullable=False, index=True)
    previous_status = Column(String(20), nullable=False)
    new_status = Column(String(20), nullable=False)
    actor = Column(String(120), nullable=False)
    occurred_at = Column(DateTime, nullable=False)
    value_snapshot = Column(String(40))  # Decimal en texte, exact
    details = Column(Text)  # JSON : lost_reason, purchase_order...

    quotation = relationship("QuotationRecord", back_populates="status_history")


# Table Pièces jointes bons de commande
class PurchaseOrderAttachment(Base):
    __tablename__ = "po_attachments"

    id = Column(String(36), primary_key=True)
    quotation_id = Column(String(36), ForeignKey("quotations.id"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    content_type = Column(String(120))
    size = Column(Integer, nullable=False)
    sha256 = Column(String(64), nullable=False)
    local_path = Column(Text, nullable=False)
    stored_by = Column(String(120))
    stored_at = Column(DateTime, server_default=func.now())
