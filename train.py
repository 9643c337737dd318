import os

from FaceAlignment import *

param_bbox_file='./BoundingBoxes/bounding_boxes_300w_trainset.mat'

if __name__=='__main__':
    imgs, shapes, scalings, names=LoadImageList('./300w_cropped', './300w_cropped/train_img_list', with_names=True)
    if os.path.exists(param_bbox_file):
        bboxes=ChooseBoxes(LoadBBox(param_bbox_file), names, imgs, shapes, scalings)
    else:
        bboxes=[ChooseRect([], shape, img.shape)[0] for img, shape in zip(imgs, shapes)]
    data=TrainingData(imgs, shapes, bboxes, DefaultParameters(), param_seed)
    data.Prepare(InitializationStrategy.KAZEMI, param_augment_num, param_validate_percent)
    print('Train samples:', len(data.train_samples), 'Validation samples:', len(data.validate_samples))
    trainer=CascadeTrainer(data.params, n_jobs=param_n_jobs, progress=PrintProgress, verbose=True)
    model=trainer.Train(data)
    SaveModel(model, 'cascade-'+str(len(model.stages)))
